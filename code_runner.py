import json
import platform
import sys
import time
from typing import Optional

from cr_utils.cr_config import RunnerSettings
from cr_utils.cr_errors import EnvelopeDecodeError, LoadError
from cr_utils.cr_executor import CodeExecutor, RunFault, RunOutcome, RunSuccess
from cr_utils.cr_logging import emit_run_record, ensure_run_logger, get_logger, run_record
from cr_utils.cr_messages import Envelope, RunRequest, RunResult, decode_envelope

__version__ = "0.1.0"

RUNNER_VERSION = f"{__version__} ({platform.python_implementation()} {platform.python_version()})"


# =========================
# Request processor
# =========================

class CodeRunner:
    """
    Turns request envelopes into response envelopes.

    Empty requests produce no response, failed compilations have their
    diagnostics rendered as output, and everything else is handed to the
    :class:`CodeExecutor`. Only a malformed envelope raises.
    """

    def __init__(self, executor: Optional[CodeExecutor] = None, settings: Optional[RunnerSettings] = None):
        self.settings = settings or RunnerSettings()
        self.executor = executor or CodeExecutor(
            max_exec_seconds=self.settings.max_exec_seconds,
            include_stack_trace=self.settings.include_stack_trace,
            module_name=self.settings.module_name,
            enable_logging=self.settings.enable_logging,
        )
        self.logger = get_logger(self.settings.enable_logging, "CodeRunner")
        self.run_logger = ensure_run_logger(self.settings.enable_logging, self.settings.log_file)

    def process_run_request(self, message: str) -> Optional[Envelope[RunResult]]:
        envelope = decode_envelope(message)
        if envelope.data.is_empty:
            self.logger.info("Request %s carries no module or diagnostics; nothing to run", envelope.sequence)
            return None
        return self.execute_run_request(envelope.data, envelope.sequence)

    def execute_run_request(self, request: RunRequest, sequence: int) -> Envelope[RunResult]:
        started = time.monotonic()
        if not request.succeeded:
            result = RunResult(
                output=[d.message for d in request.diagnostics],
                runner_version=RUNNER_VERSION,
            )
            self._log_run(sequence, "compile_failed", started, result)
            return Envelope(sequence=sequence, data=result)

        try:
            module_bytes = request.module_bytes()
        except LoadError as exc:
            outcome: RunOutcome = RunFault(str(exc))
        else:
            outcome = self.executor.execute(module_bytes, request.run_args)

        result = self._to_result(outcome, request)
        self._log_run(sequence, type(outcome).__name__, started, result)
        return Envelope(sequence=sequence, data=result)

    @staticmethod
    def _to_result(outcome: RunOutcome, request: RunRequest) -> RunResult:
        warnings = [d.message for d in request.diagnostics] or None
        if isinstance(outcome, RunSuccess):
            return RunResult(output=list(outcome.output), diagnostics=warnings, runner_version=RUNNER_VERSION)
        return RunResult(runner_exception=outcome.message, diagnostics=warnings, runner_version=RUNNER_VERSION)

    def _log_run(self, sequence: int, outcome: str, started: float, result: RunResult) -> None:
        emit_run_record(
            self.run_logger,
            run_record(
                sequence,
                outcome,
                time.monotonic() - started,
                output=result.output,
                runner_exception=result.runner_exception,
            ),
        )


def load_runner(settings: Optional[RunnerSettings] = None) -> CodeRunner:
    """Build a runner from explicit settings, or from ``CODE_RUNNER_*`` / ``.env``."""
    return CodeRunner(settings=settings or RunnerSettings.from_env())


def process_run_request(message: str) -> Optional[Envelope[RunResult]]:
    return load_runner().process_run_request(message)


# =========================
# Stdio worker loop
# =========================

def main() -> int:
    """Answer one request envelope per stdin line with one JSON line on stdout."""
    runner = load_runner()
    stdin = sys.stdin
    stdout = sys.stdout
    while True:
        line = stdin.readline()
        if not line:
            break
        if not line.strip():
            continue
        try:
            response = runner.process_run_request(line)
            text = "null" if response is None else response.to_json()
        except EnvelopeDecodeError as exc:
            text = json.dumps({"error": str(exc)}, ensure_ascii=False)
        stdout.write(text + "\n")
        stdout.flush()
    return 0


__all__ = ["CodeRunner", "RUNNER_VERSION", "load_runner", "main", "process_run_request"]


if __name__ == "__main__":
    raise SystemExit(main())
