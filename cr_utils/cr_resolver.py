import collections.abc
import inspect
import re
import types
import typing
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence, Tuple, Union

from cr_utils.cr_errors import NoEntryPointError, UnsupportedSignatureError
from cr_utils.cr_loader import LoadedModule, MethodInfo, ParameterInfo

# =========================
# Entry point discovery
# =========================

ENTRY_POINT_NAME = "Main"
NO_ENTRY_POINT_MESSAGE = "error: Program does not contain a static 'Main' method suitable for an entry point"
AMBIGUOUS_ENTRY_POINT_MESSAGE = "error: Program has more than one static 'Main' method suitable for an entry point"


@dataclass(frozen=True)
class NoArgs:
    pass


@dataclass(frozen=True)
class StringArray:
    # True for a lone ``*args``: tokens are spread instead of passed as one list
    spread: bool = False


@dataclass(frozen=True)
class NamedStrings:
    names: Tuple[str, ...]
    defaults: Dict[str, Any] = field(default_factory=dict)
    keyword_only: Tuple[str, ...] = ()


ParameterShape = Union[NoArgs, StringArray, NamedStrings]


@dataclass(frozen=True)
class EntryPoint:
    invoke: Callable[..., Any]
    shape: ParameterShape
    qualified_name: str


_STRING_NAMES = {
    "str",
    "builtins.str",
    "Optional[str]",
    "typing.Optional[str]",
    "str|None",
    "None|str",
    "Union[str,None]",
    "typing.Union[str,None]",
}
_STRING_ARRAY_PATTERN = re.compile(
    r"^(typing\.|collections\.abc\.)?(list|List|Sequence|tuple|Tuple)\[str(,\.\.\.)?\]$"
)
_ARRAY_ORIGINS = (list, tuple, collections.abc.Sequence)


def _annotation_text(annotation: Any) -> str:
    return re.sub(r"\s+", "", annotation)


def is_string_annotation(annotation: Any) -> bool:
    if annotation is inspect.Parameter.empty or annotation is str:
        return True
    if isinstance(annotation, str):
        return _annotation_text(annotation) in _STRING_NAMES
    if typing.get_origin(annotation) in (Union, types.UnionType):
        return set(typing.get_args(annotation)) == {str, type(None)}
    return False


def is_string_array_annotation(annotation: Any) -> bool:
    if isinstance(annotation, str):
        return bool(_STRING_ARRAY_PATTERN.match(_annotation_text(annotation)))
    if typing.get_origin(annotation) not in _ARRAY_ORIGINS:
        return False
    return typing.get_args(annotation) in ((str,), (str, Ellipsis))


def _describe(annotation: Any) -> str:
    if isinstance(annotation, str):
        return annotation
    return getattr(annotation, "__name__", None) or repr(annotation)


def classify_parameters(params: Sequence[ParameterInfo]) -> ParameterShape:
    if not params:
        return NoArgs()
    if len(params) == 1:
        only = params[0]
        if only.kind == inspect.Parameter.VAR_POSITIONAL and is_string_annotation(only.annotation):
            return StringArray(spread=True)
        if only.kind != inspect.Parameter.VAR_POSITIONAL and is_string_array_annotation(only.annotation):
            return StringArray()

    names: List[str] = []
    defaults: Dict[str, Any] = {}
    keyword_only: List[str] = []
    for p in params:
        if p.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise UnsupportedSignatureError(
                f"Entry point parameter `{p.name}` is variadic; only a lone *args is supported"
            )
        if is_string_array_annotation(p.annotation):
            raise UnsupportedSignatureError(
                f"Entry point parameter `{p.name}` is a string array and must be the only parameter"
            )
        if not is_string_annotation(p.annotation):
            raise UnsupportedSignatureError(
                f"Entry point parameter `{p.name}` has unsupported type `{_describe(p.annotation)}`; "
                f"only string parameters can be bound"
            )
        names.append(p.name)
        if p.has_default:
            defaults[p.name] = p.default
        if p.kind == inspect.Parameter.KEYWORD_ONLY:
            keyword_only.append(p.name)
    return NamedStrings(names=tuple(names), defaults=defaults, keyword_only=tuple(keyword_only))


def find_entry_candidates(module: LoadedModule) -> List[MethodInfo]:
    """Every static ``Main`` in the module, public or not."""
    candidates: List[MethodInfo] = []
    seen = set()
    for type_info in module.types():
        for method in type_info.methods():
            if method.name != ENTRY_POINT_NAME or not method.is_static:
                continue
            # the same function can be reachable from more than one type
            if id(method.function) in seen:
                continue
            seen.add(id(method.function))
            candidates.append(method)
    return candidates


def resolve_entry_point(module: LoadedModule) -> EntryPoint:
    candidates = find_entry_candidates(module)
    if not candidates:
        raise NoEntryPointError(NO_ENTRY_POINT_MESSAGE)
    if len(candidates) > 1:
        where = ", ".join(f"{m.declaring_type}.{m.name}" for m in candidates)
        raise NoEntryPointError(f"{AMBIGUOUS_ENTRY_POINT_MESSAGE}: {where}")
    method = candidates[0]
    return EntryPoint(
        invoke=method.function,
        shape=classify_parameters(method.parameters),
        qualified_name=f"{method.declaring_type}.{method.name}",
    )


__all__ = [
    "ENTRY_POINT_NAME",
    "NO_ENTRY_POINT_MESSAGE",
    "AMBIGUOUS_ENTRY_POINT_MESSAGE",
    "NoArgs",
    "StringArray",
    "NamedStrings",
    "ParameterShape",
    "EntryPoint",
    "classify_parameters",
    "find_entry_candidates",
    "is_string_annotation",
    "is_string_array_annotation",
    "resolve_entry_point",
]
