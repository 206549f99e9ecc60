from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cr_utils.cr_errors import UnsupportedSignatureError
from cr_utils.cr_resolver import NamedStrings, NoArgs, ParameterShape, StringArray

# =========================
# Tokenizer
# =========================


def tokenize(raw: Optional[str]) -> List[str]:
    """Split a command line on whitespace, keeping double-quoted runs together.

    Quotes are stripped; there are no escapes. An unterminated quote runs to
    the end of the string.
    """
    if not raw:
        return []
    tokens: List[str] = []
    current: List[str] = []
    in_token = False
    in_quotes = False
    for ch in raw:
        if ch == '"':
            in_quotes = not in_quotes
            in_token = True
        elif ch.isspace() and not in_quotes:
            if in_token:
                tokens.append("".join(current))
                current = []
                in_token = False
        else:
            current.append(ch)
            in_token = True
    if in_token:
        tokens.append("".join(current))
    return tokens


# =========================
# Binder
# =========================

FLAG_PREFIX = "--"


@dataclass(frozen=True)
class BoundArguments:
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)

    def call(self, func):
        return func(*self.args, **self.kwargs)


def _flag_key(name: str) -> str:
    return name.lower().replace("-", "_")


def _collect_flags(tokens: Sequence[str], declared: Dict[str, str]) -> Dict[str, str]:
    """Map declared parameter names to the values their ``--flag`` supplies."""
    values: Dict[str, str] = {}
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if not token.startswith(FLAG_PREFIX) or len(token) <= len(FLAG_PREFIX):
            continue
        body = token[len(FLAG_PREFIX):]
        inline_value: Optional[str] = None
        if "=" in body:
            body, inline_value = body.split("=", 1)
        name = declared.get(_flag_key(body))
        if name is None:
            continue
        if inline_value is not None:
            values[name] = inline_value
            continue
        if i >= len(tokens):
            break
        following = tokens[i]
        if following.startswith(FLAG_PREFIX) and _flag_key(following[len(FLAG_PREFIX):].split("=", 1)[0]) in declared:
            # the next declared flag starts here; this one has no value
            continue
        values[name] = following
        i += 1
    return values


def bind_arguments(tokens: Sequence[str], shape: ParameterShape) -> BoundArguments:
    if isinstance(shape, NoArgs):
        return BoundArguments()
    if isinstance(shape, StringArray):
        if shape.spread:
            return BoundArguments(args=tuple(tokens))
        return BoundArguments(args=(list(tokens),))
    if isinstance(shape, NamedStrings):
        declared = {_flag_key(name): name for name in shape.names}
        supplied = _collect_flags(tokens, declared)
        args: List[Any] = []
        kwargs: Dict[str, Any] = {}
        for name in shape.names:
            if name in supplied:
                value = supplied[name]
            else:
                value = shape.defaults.get(name)
            if name in shape.keyword_only:
                kwargs[name] = value
            else:
                args.append(value)
        return BoundArguments(args=tuple(args), kwargs=kwargs)
    raise UnsupportedSignatureError(f"Cannot bind arguments for parameter shape {shape!r}")


__all__ = ["BoundArguments", "FLAG_PREFIX", "bind_arguments", "tokenize"]
