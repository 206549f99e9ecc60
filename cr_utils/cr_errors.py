"""
Error taxonomy for the code runner.

Only ``EnvelopeDecodeError`` is meant to reach callers of the request
processor; everything else is caught by the executor and turned into a
structured result.
"""


class CodeRunnerError(Exception):
    """Base class for code runner failures."""


class EnvelopeDecodeError(CodeRunnerError, ValueError):
    """Raised when a request envelope is not structurally valid."""


class LoadError(CodeRunnerError):
    """Raised when module bytes are not a valid image for this interpreter."""


class NoEntryPointError(CodeRunnerError):
    """Raised when a module has no static ``Main``, or more than one."""


class UnsupportedSignatureError(CodeRunnerError):
    """Raised when ``Main`` declares parameters that are not strings."""


class CaptureError(CodeRunnerError):
    """Raised on misuse of the process-wide output capture."""


__all__ = [
    "CodeRunnerError",
    "EnvelopeDecodeError",
    "LoadError",
    "NoEntryPointError",
    "UnsupportedSignatureError",
    "CaptureError",
]
