import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

# =========================
# Runner settings
# =========================

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_log = logging.getLogger("CodeRunnerConfig")


def _parse_bool(raw: Optional[str], default: bool, key: str) -> bool:
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    _log.warning("Ignoring invalid boolean %s=%r, using %s", key, raw, default)
    return default


def _parse_seconds(raw: Optional[str], key: str) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        _log.warning("Ignoring invalid number %s=%r", key, raw)
        return None
    if seconds <= 0:
        return None
    return seconds


@dataclass(frozen=True)
class RunnerSettings:
    enable_logging: bool = False
    log_file: str = "code_runner.log"
    max_exec_seconds: Optional[float] = None
    include_stack_trace: bool = True
    module_name: str = "guest_program"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, use_dotenv: bool = True) -> "RunnerSettings":
        """Build settings from ``CODE_RUNNER_*`` variables.

        A ``.env`` file in the working directory is loaded first unless
        ``use_dotenv`` is false or an explicit mapping is passed in.
        """
        if environ is None:
            if use_dotenv:
                load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ
        return cls(
            enable_logging=_parse_bool(environ.get("CODE_RUNNER_ENABLE_LOGGING"), False, "CODE_RUNNER_ENABLE_LOGGING"),
            log_file=environ.get("CODE_RUNNER_LOG_FILE") or "code_runner.log",
            max_exec_seconds=_parse_seconds(environ.get("CODE_RUNNER_MAX_EXEC_SECONDS"), "CODE_RUNNER_MAX_EXEC_SECONDS"),
            include_stack_trace=_parse_bool(
                environ.get("CODE_RUNNER_INCLUDE_STACK_TRACE"), True, "CODE_RUNNER_INCLUDE_STACK_TRACE"
            ),
            module_name=environ.get("CODE_RUNNER_MODULE_NAME") or "guest_program",
        )


__all__ = ["RunnerSettings"]
