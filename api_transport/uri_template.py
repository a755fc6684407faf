"""RFC 6570 URI template expansion (levels 1-4).

Only expansion is supported; templates are never matched against URLs.
Variables whose value is None, or an empty list/dict, are undefined and
produce no output, so an unset query parameter never appears as 'name='.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, NamedTuple
from urllib.parse import quote


class UriTemplateError(ValueError):
    """Raised when a template expression is malformed."""


class _Operator(NamedTuple):
    first: str
    separator: str
    named: bool
    if_empty: str
    allow_reserved: bool


_OPERATORS: dict[str, _Operator] = {
    "": _Operator("", ",", False, "", False),
    "+": _Operator("", ",", False, "", True),
    "#": _Operator("#", ",", False, "", True),
    ".": _Operator(".", ".", False, "", False),
    "/": _Operator("/", "/", False, "", False),
    ";": _Operator(";", ";", True, "", False),
    "?": _Operator("?", "&", True, "=", False),
    "&": _Operator("&", "&", True, "=", False),
}

_EXPRESSION = re.compile(r"\{([^{}]*)\}")
_VARSPEC = re.compile(r"^((?:[A-Za-z0-9_.]|%[0-9A-Fa-f]{2})+)(\*|:([1-9][0-9]{0,3}))?$")
_PCT_TRIPLET = re.compile(r"(%[0-9A-Fa-f]{2})")

_RESERVED = ":/?#[]@!$&'()*+,;="


def _encode(value: str, allow_reserved: bool) -> str:
    if not allow_reserved:
        return quote(value, safe="")
    # Reserved expansion keeps existing percent-encoded triplets intact.
    parts = _PCT_TRIPLET.split(value)
    return "".join(
        part if _PCT_TRIPLET.fullmatch(part) else quote(part, safe=_RESERVED)
        for part in parts
    )


def _is_undefined(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _expand_varspec(
    op: _Operator,
    name: str,
    explode: bool,
    prefix: int | None,
    value: Any,
) -> str | None:
    if _is_undefined(value):
        return None

    if isinstance(value, dict):
        items = [(str(k), str(v)) for k, v in value.items() if v is not None]
        if explode:
            return op.separator.join(
                f"{_encode(k, op.allow_reserved)}={_encode(v, op.allow_reserved)}"
                for k, v in items
            )
        joined = ",".join(
            f"{_encode(k, op.allow_reserved)},{_encode(v, op.allow_reserved)}" for k, v in items
        )
        return f"{name}={joined}" if op.named else joined

    if isinstance(value, (list, tuple)):
        values = [_encode(str(v), op.allow_reserved) for v in value if v is not None]
        if explode:
            if op.named:
                return op.separator.join(
                    f"{name}={v}" if v else f"{name}{op.if_empty}" for v in values
                )
            return op.separator.join(values)
        joined = ",".join(values)
        return f"{name}={joined}" if op.named else joined

    text = str(value)
    if prefix is not None:
        text = text[:prefix]
    encoded = _encode(text, op.allow_reserved)
    if op.named:
        if not encoded:
            return f"{name}{op.if_empty}"
        return f"{name}={encoded}"
    return encoded


def _expand_expression(expression: str, variables: Mapping[str, Any]) -> str:
    if not expression:
        raise UriTemplateError("Empty template expression '{}'")

    op_char = expression[0] if expression[0] in "+#./;?&" else ""
    op = _OPERATORS[op_char]
    body = expression[len(op_char):]

    expanded: list[str] = []
    for varspec in body.split(","):
        match = _VARSPEC.match(varspec)
        if match is None:
            raise UriTemplateError(f"Invalid variable specification '{varspec}'")
        name = match.group(1)
        explode = match.group(2) == "*"
        prefix = int(match.group(3)) if match.group(3) else None
        result = _expand_varspec(op, name, explode, prefix, variables.get(name))
        if result is not None:
            expanded.append(result)

    if not expanded:
        return ""
    return op.first + op.separator.join(expanded)


def expand(template: str, variables: Mapping[str, Any]) -> str:
    """Expand a URI template.

    Args:
        template: RFC 6570 template, e.g. "{+baseurl}/users{?%24top,select}".
        variables: Variable name -> value. Values are str, list, or dict;
            callers are expected to have stringified scalars already.

    Returns:
        The expanded URI reference.

    Raises:
        UriTemplateError: If an expression is malformed.
    """
    return _EXPRESSION.sub(lambda m: _expand_expression(m.group(1), variables), template)
