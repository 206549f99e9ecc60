import io
import sys
import threading

import pytest

from cr_utils.cr_capture import OutputCapture, capture_output, is_output_redirected, split_lines
from cr_utils.cr_errors import CaptureError


def test_split_lines_keeps_trailing_piece():
    assert split_lines("a\nb\n") == ["a", "b", ""]
    assert split_lines("a\r\nb") == ["a", "b"]
    assert split_lines("a\rb\n") == ["a", "b", ""]
    assert split_lines("") == [""]


def test_begin_and_end_restore_stdout():
    before = sys.stdout
    capture = OutputCapture().begin()
    assert is_output_redirected()
    assert sys.stdout is not before
    print("one")
    sys.stdout.write("two")
    lines = capture.end()
    assert lines == ["one", "two"]
    assert sys.stdout is before
    assert not is_output_redirected()


def test_context_manager_restores_on_exception():
    before = sys.stdout
    with pytest.raises(RuntimeError):
        with capture_output():
            print("partial")
            raise RuntimeError("boom")
    assert sys.stdout is before
    assert not is_output_redirected()


def test_guest_replacing_stdout_is_undone():
    before = sys.stdout
    with capture_output() as capture:
        print("kept")
        sys.stdout = io.StringIO()
        print("lost")
    assert sys.stdout is before
    assert capture.end() == ["kept", ""]


def test_guest_closing_stdout_keeps_text():
    with capture_output() as capture:
        print("still here")
        sys.stdout.close()
    assert capture.end() == ["still here", ""]


def test_end_twice_returns_same_lines():
    capture = OutputCapture().begin()
    print("x")
    first = capture.end()
    assert capture.end() == first


def test_end_without_begin():
    with pytest.raises(CaptureError):
        OutputCapture().end()


def test_capture_cannot_be_restarted():
    capture = OutputCapture().begin()
    capture.end()
    with pytest.raises(CaptureError):
        capture.begin()


def test_nested_capture_on_same_thread_is_refused():
    with capture_output():
        with pytest.raises(CaptureError, match="already"):
            OutputCapture().begin()


def test_consecutive_captures_are_isolated():
    with capture_output() as first:
        print("first run")
    with capture_output() as second:
        print("second run")
    assert first.end() == ["first run", ""]
    assert second.end() == ["second run", ""]


def test_concurrent_captures_are_serialized():
    results = {}
    start = threading.Barrier(4)

    def worker(index):
        start.wait()
        with capture_output() as capture:
            for n in range(50):
                print(f"{index}-{n}")
        results[index] = capture.end()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for index, lines in results.items():
        assert lines == [f"{index}-{n}" for n in range(50)] + [""]
