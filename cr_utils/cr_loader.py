import builtins as _py_builtins
import importlib.util
import inspect
import marshal
import types
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from cr_utils.cr_errors import LoadError

# =========================
# Module images
# =========================

# magic(4) + flags(4) + mtime/size or source hash(8), as written by py_compile
HEADER_SIZE = 16
_KNOWN_FLAGS = {0b00, 0b01, 0b11}

# Names a guest may not reach: anything that reads the host console or
# hands control of the process to an interactive prompt.
DENIED_BUILTINS = frozenset(
    {"input", "breakpoint", "help", "exit", "quit", "copyright", "credits", "license"}
)

PUBLIC = "public"
NON_PUBLIC = "non-public"
MODULE_TYPE_NAME = "<module>"


def guest_builtins() -> Dict[str, Any]:
    return {k: v for k, v in vars(_py_builtins).items() if k not in DENIED_BUILTINS}


def visibility_of(name: str) -> str:
    return NON_PUBLIC if name.startswith("_") else PUBLIC


def decode_image(data: Optional[bytes]) -> types.CodeType:
    """Validate a module image and return its top-level code object."""
    if not data:
        raise LoadError("No module image was supplied")
    if len(data) < HEADER_SIZE:
        raise LoadError(f"Module image is truncated ({len(data)} bytes, header needs {HEADER_SIZE})")
    magic = bytes(data[:4])
    if magic != importlib.util.MAGIC_NUMBER:
        raise LoadError(
            f"Module image was compiled for a different interpreter "
            f"(magic {magic.hex()}, expected {importlib.util.MAGIC_NUMBER.hex()})"
        )
    flags = int.from_bytes(data[4:8], "little")
    if flags not in _KNOWN_FLAGS:
        raise LoadError(f"Module image has unrecognised header flags {flags:#x}")
    try:
        code = marshal.loads(bytes(data[HEADER_SIZE:]))
    except (ValueError, EOFError, TypeError) as exc:
        raise LoadError(f"Module image payload is corrupt: {exc}") from exc
    if not isinstance(code, types.CodeType):
        raise LoadError(f"Module image payload is a {type(code).__name__}, not a code object")
    return code


# =========================
# Introspection
# =========================

@dataclass(frozen=True)
class ParameterInfo:
    name: str
    annotation: Any
    kind: Any
    default: Any

    @property
    def has_default(self) -> bool:
        return self.default is not inspect.Parameter.empty


@dataclass(frozen=True)
class MethodInfo:
    name: str
    visibility: str
    is_static: bool
    parameters: Tuple[ParameterInfo, ...]
    function: Callable[..., Any]
    declaring_type: str


@dataclass
class TypeInfo:
    name: str
    qualname: str
    visibility: str
    target: Any
    is_module: bool = False

    def methods(self) -> List[MethodInfo]:
        found: List[MethodInfo] = []
        if self.is_module:
            for name, value in vars(self.target).items():
                if isinstance(value, types.FunctionType) and value.__module__ == self.target.__name__:
                    found.append(self._method(name, value, is_static=True))
            return found
        for name, value in vars(self.target).items():
            if isinstance(value, staticmethod):
                found.append(self._method(name, value.__func__, is_static=True))
            elif isinstance(value, classmethod):
                found.append(self._method(name, value.__func__, is_static=False))
            elif isinstance(value, types.FunctionType):
                found.append(self._method(name, value, is_static=False))
        return found

    def _method(self, name: str, func: Callable[..., Any], is_static: bool) -> MethodInfo:
        return MethodInfo(
            name=name,
            visibility=visibility_of(name),
            is_static=is_static,
            parameters=_parameters_of(func),
            function=func,
            declaring_type=self.qualname,
        )


def _parameters_of(func: Callable[..., Any]) -> Tuple[ParameterInfo, ...]:
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return ()
    return tuple(
        ParameterInfo(name=p.name, annotation=p.annotation, kind=p.kind, default=p.default)
        for p in sig.parameters.values()
    )


@dataclass
class LoadedModule:
    name: str
    namespace: types.ModuleType
    code: types.CodeType = field(repr=False)

    def types(self) -> List[TypeInfo]:
        """The module itself, then every class it defines, nested ones included."""
        found = [
            TypeInfo(
                name=MODULE_TYPE_NAME,
                qualname=self.name,
                visibility=PUBLIC,
                target=self.namespace,
                is_module=True,
            )
        ]
        seen = set()

        def visit(owner: Dict[str, Any]) -> None:
            for value in list(owner.values()):
                if not isinstance(value, type) or id(value) in seen:
                    continue
                if value.__module__ != self.name:
                    continue
                seen.add(id(value))
                found.append(
                    TypeInfo(
                        name=value.__name__,
                        qualname=value.__qualname__,
                        visibility=visibility_of(value.__name__),
                        target=value,
                    )
                )
                visit(vars(value))

        visit(vars(self.namespace))
        return found


def load_module(data: bytes, name: str = "guest_program") -> LoadedModule:
    """Decode ``data`` and execute its body in a fresh, unregistered namespace.

    Image problems raise :class:`LoadError`. Anything raised by the module
    body is guest behaviour and propagates unchanged.
    """
    code = decode_image(data)
    return exec_image(code, name)


def exec_image(code: types.CodeType, name: str = "guest_program") -> LoadedModule:
    module = types.ModuleType(name)
    module.__dict__["__builtins__"] = guest_builtins()
    exec(code, module.__dict__)
    return LoadedModule(name=name, namespace=module, code=code)


__all__ = [
    "HEADER_SIZE",
    "DENIED_BUILTINS",
    "PUBLIC",
    "NON_PUBLIC",
    "MODULE_TYPE_NAME",
    "ParameterInfo",
    "MethodInfo",
    "TypeInfo",
    "LoadedModule",
    "decode_image",
    "exec_image",
    "guest_builtins",
    "load_module",
    "visibility_of",
]
