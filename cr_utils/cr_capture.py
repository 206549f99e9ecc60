"""
Process-wide capture of ``sys.stdout``.

``sys.stdout`` is shared by every thread, so at most one capture may be
active at a time. ``begin`` takes a module-level lock that ``end`` releases;
concurrent runs queue behind it.
"""

import io
import re
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, TextIO

from cr_utils.cr_errors import CaptureError

_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_capture_lock = threading.Lock()
_owner_thread: Optional[int] = None
_active_sink: Optional["_CaptureSink"] = None


class _CaptureSink(io.StringIO):
    """In-memory stdout replacement that outlives guest calls to ``close``."""

    def close(self) -> None:
        pass

    def isatty(self) -> bool:
        return False


def split_lines(text: str) -> List[str]:
    """Split on any line terminator, keeping the trailing (possibly empty) piece."""
    return _LINE_BREAK.split(text)


def is_output_redirected() -> bool:
    sink = _active_sink
    return sink is not None or isinstance(sys.stdout, _CaptureSink)


class OutputCapture:
    def __init__(self) -> None:
        self._sink: Optional[_CaptureSink] = None
        self._saved: Optional[TextIO] = None
        self._lines: Optional[List[str]] = None

    @property
    def active(self) -> bool:
        return self._sink is not None

    def begin(self) -> "OutputCapture":
        global _owner_thread, _active_sink
        if self._sink is not None or self._lines is not None:
            raise CaptureError("This capture has already been started")
        if _owner_thread == threading.get_ident():
            raise CaptureError("Output is already being captured on this thread")
        _capture_lock.acquire()
        try:
            _owner_thread = threading.get_ident()
            self._saved = sys.stdout
            self._sink = _CaptureSink()
            _active_sink = self._sink
            sys.stdout = self._sink
        except BaseException:
            _owner_thread = None
            _active_sink = None
            _capture_lock.release()
            raise
        return self

    def end(self) -> List[str]:
        """Restore the previous stdout and return the captured lines."""
        global _owner_thread, _active_sink
        if self._lines is not None:
            return list(self._lines)
        if self._sink is None:
            raise CaptureError("Capture was never started")
        sink = self._sink
        try:
            sys.stdout = self._saved
        finally:
            self._sink = None
            self._saved = None
            _active_sink = None
            _owner_thread = None
            _capture_lock.release()
        self._lines = split_lines(sink.getvalue())
        return list(self._lines)


@contextmanager
def capture_output() -> Iterator[OutputCapture]:
    capture = OutputCapture().begin()
    try:
        yield capture
    finally:
        capture.end()


__all__ = ["OutputCapture", "capture_output", "is_output_redirected", "split_lines"]
