import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from cr_utils.cr_errors import EnvelopeDecodeError, LoadError

# =========================
# Wire models
# =========================

T = TypeVar("T")


def _lookup(obj: Mapping[str, Any], key: str, default: Any = None) -> Any:
    # producers serialize with camelCase or PascalCase
    if key in obj:
        return obj[key]
    lowered = key.lower()
    for k, v in obj.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return default


def _expect(value: Any, kinds: Tuple[type, ...], where: str) -> Any:
    if value is None:
        return None
    if isinstance(value, bool) and bool not in kinds:
        raise EnvelopeDecodeError(f"Field '{where}' has type bool, expected {kinds[0].__name__}")
    if not isinstance(value, kinds):
        raise EnvelopeDecodeError(
            f"Field '{where}' has type {type(value).__name__}, expected {kinds[0].__name__}"
        )
    return value


@dataclass(frozen=True)
class Diagnostic:
    severity: int = 0
    line: int = 0
    message: str = ""
    column: int = 0
    text: str = ""

    @classmethod
    def from_dict(cls, obj: Any, index: int = 0) -> "Diagnostic":
        if not isinstance(obj, Mapping):
            raise EnvelopeDecodeError(f"Diagnostic {index} is not an object")
        where = f"data.diagnostics[{index}]"
        return cls(
            severity=_expect(_lookup(obj, "severity"), (int,), f"{where}.severity") or 0,
            line=_expect(_lookup(obj, "line"), (int,), f"{where}.line") or 0,
            message=_expect(_lookup(obj, "message"), (str,), f"{where}.message") or "",
            column=_expect(_lookup(obj, "column"), (int,), f"{where}.column") or 0,
            text=_expect(_lookup(obj, "text"), (str,), f"{where}.text") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "line": self.line,
            "message": self.message,
            "column": self.column,
            "text": self.text,
        }


@dataclass(frozen=True)
class RunRequest:
    base64_assembly: Optional[str] = None
    succeeded: bool = False
    diagnostics: Tuple[Diagnostic, ...] = ()
    run_args: Optional[str] = None

    @property
    def has_module(self) -> bool:
        return bool(self.base64_assembly)

    @property
    def is_empty(self) -> bool:
        return not self.has_module and not self.diagnostics

    def module_bytes(self) -> Optional[bytes]:
        """Decode ``base64_assembly``; malformed base64 is a load failure."""
        if not self.base64_assembly:
            return None
        try:
            return base64.b64decode(self.base64_assembly, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise LoadError(f"Module image is not valid base64: {exc}") from exc

    @classmethod
    def from_module(
        cls, data: bytes, run_args: Optional[str] = None, diagnostics: Tuple[Diagnostic, ...] = ()
    ) -> "RunRequest":
        return cls(
            base64_assembly=base64.b64encode(data).decode("ascii"),
            succeeded=True,
            diagnostics=tuple(diagnostics),
            run_args=run_args,
        )

    @classmethod
    def from_dict(cls, obj: Any) -> "RunRequest":
        if not isinstance(obj, Mapping):
            raise EnvelopeDecodeError("Envelope 'data' is not an object")
        raw_diagnostics = _expect(_lookup(obj, "diagnostics"), (list,), "data.diagnostics") or []
        return cls(
            base64_assembly=_expect(_lookup(obj, "base64Assembly"), (str,), "data.base64Assembly"),
            succeeded=bool(_expect(_lookup(obj, "succeeded"), (bool,), "data.succeeded")),
            diagnostics=tuple(Diagnostic.from_dict(d, i) for i, d in enumerate(raw_diagnostics)),
            run_args=_expect(_lookup(obj, "runArgs"), (str,), "data.runArgs"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base64Assembly": self.base64_assembly,
            "succeeded": self.succeeded,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "runArgs": self.run_args,
        }


@dataclass
class RunResult:
    output: Optional[List[str]] = None
    diagnostics: Optional[List[str]] = None
    runner_exception: Optional[str] = None
    runner_version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output": self.output,
            "diagnostics": self.diagnostics,
            "runnerException": self.runner_exception,
            "codeRunnerVersion": self.runner_version,
        }


@dataclass
class Envelope(Generic[T]):
    sequence: int
    data: T

    def to_dict(self) -> Dict[str, Any]:
        payload = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        return {"sequence": self.sequence, "data": payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def decode_envelope(message: str) -> Envelope[RunRequest]:
    try:
        obj = json.loads(message)
    except (TypeError, ValueError) as exc:
        raise EnvelopeDecodeError(f"Request envelope is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise EnvelopeDecodeError("Request envelope is not a JSON object")
    sequence = _lookup(obj, "sequence")
    if sequence is None:
        raise EnvelopeDecodeError("Request envelope has no 'sequence'")
    _expect(sequence, (int,), "sequence")
    data = _lookup(obj, "data")
    if data is None:
        raise EnvelopeDecodeError("Request envelope has no 'data'")
    return Envelope(sequence=sequence, data=RunRequest.from_dict(data))


__all__ = [
    "Diagnostic",
    "Envelope",
    "RunRequest",
    "RunResult",
    "decode_envelope",
]
