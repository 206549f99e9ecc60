import json
import logging
from typing import Any, Dict, Mapping, Optional

RUN_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class _NoopLogger:
    def __getattr__(self, _name: str):
        return self._noop

    def _noop(self, *args: Any, **kwargs: Any) -> None:
        pass


NOOP_LOGGER = _NoopLogger()


def get_logger(enable_logging: bool, name: str) -> logging.Logger | _NoopLogger:
    if not enable_logging:
        return NOOP_LOGGER
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    return logger


# =========================
# Run records
# =========================

class RunRecordFormatter(logging.Formatter):
    """Writes a mapping logged as the message as one JSON object after the usual prefix."""

    def __init__(self, fmt: str = RUN_LOG_FORMAT):
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, Mapping):
            record = logging.makeLogRecord(record.__dict__)
            record.msg = json.dumps(dict(record.msg), ensure_ascii=False, default=repr)
            record.args = ()
        return super().format(record)


def run_record(
    sequence: int,
    outcome: str,
    duration_s: float,
    output: Optional[list] = None,
    runner_exception: Optional[str] = None,
) -> Dict[str, Any]:
    # first line of a fault only
    headline = runner_exception.splitlines()[0] if runner_exception else None
    return {
        "sequence": sequence,
        "outcome": outcome,
        "duration_s": round(duration_s, 4),
        "output_lines": len(output or []),
        "runner_exception": headline,
    }


def emit_run_record(logger: logging.Logger | _NoopLogger, record: Mapping[str, Any]) -> None:
    logger.info(dict(record))


def ensure_run_logger(
    enable_logging: bool, log_file: str, logger_name: str = "CodeRunnerRunLog"
) -> logging.Logger | _NoopLogger:
    """Return the run-record logger, attaching its JSON file handler once per process."""
    if not enable_logging:
        return NOOP_LOGGER
    logger = logging.getLogger(logger_name)
    if not any(getattr(h, "_cr_is_run_log", False) for h in logger.handlers):
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.INFO)
        setattr(fh, "_cr_is_run_log", True)
        fh.setFormatter(RunRecordFormatter())
        logger.addHandler(fh)
    logger.setLevel(logging.INFO)
    # records go to the run log file only
    logger.propagate = False
    return logger


__all__ = [
    "NOOP_LOGGER",
    "RUN_LOG_FORMAT",
    "RunRecordFormatter",
    "emit_run_record",
    "ensure_run_logger",
    "get_logger",
    "run_record",
]
