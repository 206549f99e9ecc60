import re
import signal
import threading
import time
import traceback
import types
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Union

from cr_utils.cr_args import BoundArguments, bind_arguments, tokenize
from cr_utils.cr_capture import OutputCapture
from cr_utils.cr_errors import CaptureError, LoadError, NoEntryPointError, UnsupportedSignatureError
from cr_utils.cr_loader import DENIED_BUILTINS, decode_image, exec_image
from cr_utils.cr_logging import get_logger
from cr_utils.cr_resolver import EntryPoint, resolve_entry_point

# =========================
# Run outcomes
# =========================


@dataclass(frozen=True)
class RunSuccess:
    output: List[str]


@dataclass(frozen=True)
class RunFault:
    message: str


RunOutcome = Union[RunSuccess, RunFault]


class _ExecutionTimeout(BaseException):
    """Raised when guest code exceeds the configured runtime budget; guest ``except Exception`` handlers do not catch it."""


_UNDEFINED_NAME = re.compile(r"name '([^']+)' is not defined")


def _safe_text(value: object) -> str:
    # guest objects can define a __str__ that raises
    try:
        return str(value)
    except Exception:
        return f"<unprintable {type(value).__name__} object>"


# =========================
# Guarded executor
# =========================

class CodeExecutor:
    """
    Runs one compiled module per call.
    - Module body and ``Main`` run in a fresh namespace with console-control builtins removed.
    - Everything written to stdout from the start of the module body is captured.
    - Load, resolve, bind and guest failures come back as a RunFault; only KeyboardInterrupt propagates.
    """

    def __init__(
        self,
        max_exec_seconds: Optional[float] = None,
        include_stack_trace: bool = True,
        module_name: str = "guest_program",
        enable_logging: bool = False,
    ):
        self.enable_logging = enable_logging
        self.logger = get_logger(self.enable_logging, "CodeExecutor")
        self.max_exec_seconds = float(max_exec_seconds) if max_exec_seconds else None
        self.include_stack_trace = include_stack_trace
        self.module_name = module_name

    def execute(self, module_bytes: Optional[bytes], run_args: Optional[str] = None) -> RunOutcome:
        started = time.monotonic()
        try:
            code = decode_image(module_bytes)
        except LoadError as exc:
            self.logger.info("Module rejected: %s", exc)
            return RunFault(str(exc))

        capture = OutputCapture()
        try:
            capture.begin()
        except CaptureError as exc:
            return RunFault(str(exc))
        try:
            outcome = self._run_guest(code, run_args)
        finally:
            lines = capture.end()

        if outcome is None:
            outcome = RunSuccess(lines)
        self.logger.info(
            "Run finished in %.3fs: %s",
            time.monotonic() - started,
            type(outcome).__name__,
        )
        return outcome

    def _run_guest(self, code: types.CodeType, run_args: Optional[str]) -> Optional[RunOutcome]:
        """Run the module; ``None`` means it completed and the captured output stands."""
        try:
            with self._time_budget():
                module = exec_image(code, self.module_name)
                entry = resolve_entry_point(module)
                bound = bind_arguments(tokenize(run_args), entry.shape)
                self._invoke(entry, bound)
        except NoEntryPointError as exc:
            self.logger.info("No entry point: %s", exc)
            return RunSuccess([str(exc)])
        except UnsupportedSignatureError as exc:
            self.logger.info("Unsupported entry point signature: %s", exc)
            return RunFault(str(exc))
        except _ExecutionTimeout as exc:
            return RunFault(str(exc))
        except SystemExit as exc:
            return self._exit_outcome(exc)
        except KeyboardInterrupt:
            raise
        except ModuleNotFoundError as exc:
            return RunFault(self._with_trace(f"Missing module `{exc.name}`", exc, code))
        except UnboundLocalError as exc:
            return RunFault(self._describe_exception(exc, code))
        except NameError as exc:
            return RunFault(self._with_trace(self._describe_missing_name(exc), exc, code))
        except BaseException as exc:
            self.logger.info("Guest raised %s", type(exc).__name__)
            return RunFault(self._describe_exception(exc, code))
        return None

    def _invoke(self, entry: EntryPoint, bound: BoundArguments) -> None:
        self.logger.info("Invoking %s", entry.qualified_name)
        bound.call(entry.invoke)

    @staticmethod
    def _exit_outcome(exc: SystemExit) -> Optional[RunOutcome]:
        status = exc.code
        if status is None or (isinstance(status, int) and status == 0):
            return None
        if isinstance(status, int):
            return RunFault(f"Program exited with code {status}")
        return RunFault(f"Program exited: {_safe_text(status)}")

    @staticmethod
    def _missing_name(exc: NameError) -> str:
        name = getattr(exc, "name", None)
        if name:
            return name
        text = _safe_text(exc)
        match = _UNDEFINED_NAME.search(text)
        return match.group(1) if match else text

    def _describe_missing_name(self, exc: NameError) -> str:
        name = self._missing_name(exc)
        if name in DENIED_BUILTINS:
            return f"`{name}` is not available to programs"
        return f"Missing type `{name}`"

    def _describe_exception(self, exc: BaseException, code: types.CodeType) -> str:
        return self._with_trace(f"{type(exc).__name__}: {_safe_text(exc)}", exc, code)

    def _with_trace(self, summary: str, exc: BaseException, code: types.CodeType) -> str:
        if not self.include_stack_trace:
            return summary
        trace = self._guest_traceback(exc, code)
        return f"{summary}\n{trace}" if trace else summary

    def _guest_traceback(self, exc: BaseException, code: types.CodeType) -> str:
        # keep only frames from the guest's own source file
        try:
            tb_exc = traceback.TracebackException.from_exception(exc)
            frames = [f for f in tb_exc.stack if f.filename == code.co_filename]
            if not frames:
                return ""
            tb_exc.stack = traceback.StackSummary.from_list(frames)
            return "".join(tb_exc.format()).rstrip("\n")
        except Exception as err:
            self.logger.warning("Could not format guest traceback: %s", type(err).__name__)
            return ""

    @contextmanager
    def _time_budget(self) -> Iterator[None]:
        timer_supported = hasattr(signal, "SIGALRM") and hasattr(signal, "setitimer")
        on_main_thread = threading.current_thread() is threading.main_thread()
        if not self.max_exec_seconds or not timer_supported or not on_main_thread:
            yield
            return

        budget = self.max_exec_seconds

        def _raise_timeout(signum, frame):  # type: ignore[unused-argument]
            raise _ExecutionTimeout(f"Execution exceeded {budget:.2f}s budget")

        previous_handler = signal.getsignal(signal.SIGALRM)
        signal.signal(signal.SIGALRM, _raise_timeout)
        signal.setitimer(signal.ITIMER_REAL, budget)
        try:
            yield
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0.0)
            if previous_handler is not None:
                signal.signal(signal.SIGALRM, previous_handler)


__all__ = ["CodeExecutor", "RunFault", "RunOutcome", "RunSuccess"]
