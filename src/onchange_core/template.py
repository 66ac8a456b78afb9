"""Path templates: `{name}` references to path variables, `{{`/`}}` for literal braces.

Templates are compiled once, so a bad template fails at startup and rendering
an already-compiled template against a PathVariables never fails.
"""

from collections.abc import Mapping
from typing import NamedTuple

from onchange_core.models import VARIABLE_NAMES, PathVariables


class TemplateError(ValueError):
    """Raised for an unknown variable or an unmatched brace."""


class _Text(NamedTuple):
    text: str


class _Var(NamedTuple):
    name: str


def compile_template(source: str) -> tuple[_Text | _Var, ...]:
    """Split a template into literal text and variable references.

    Args:
        source: Template string

    Returns:
        Tuple of segments, adjacent literals merged

    Raises:
        TemplateError: On an unmatched brace or unknown variable
    """
    segments: list[_Text | _Var] = []
    buf: list[str] = []
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]
        if ch == "{":
            if source.startswith("{{", i):
                buf.append("{")
                i += 2
                continue
            close = source.find("}", i + 1)
            nested = source.find("{", i + 1)
            if close == -1 or (nested != -1 and nested < close):
                raise TemplateError(f"Unmatched '{{' at position {i} in template {source!r}")
            name = source[i + 1 : close].strip()
            if name not in VARIABLE_NAMES:
                allowed = ", ".join(sorted(VARIABLE_NAMES))
                raise TemplateError(f"Unknown template variable {{{name}}} (expected one of: {allowed})")
            if buf:
                segments.append(_Text("".join(buf)))
                buf = []
            segments.append(_Var(name))
            i = close + 1
        elif ch == "}":
            if source.startswith("}}", i):
                buf.append("}")
                i += 2
                continue
            raise TemplateError(f"Unmatched '}}' at position {i} in template {source!r}")
        else:
            buf.append(ch)
            i += 1

    if buf:
        segments.append(_Text("".join(buf)))
    return tuple(segments)


class PathTemplate:
    """A compiled message or command template."""

    def __init__(self, source: str):
        self.source = source
        self._segments = compile_template(source)

    @property
    def variables(self) -> list[str]:
        """Variable names referenced, in order of first appearance."""
        names: list[str] = []
        for seg in self._segments:
            if isinstance(seg, _Var) and seg.name not in names:
                names.append(seg.name)
        return names

    @property
    def is_empty(self) -> bool:
        return not self._segments

    def render(self, variables: PathVariables | Mapping[str, str]) -> str:
        """Substitute variables into the template."""
        values = variables.as_dict() if isinstance(variables, PathVariables) else variables
        return "".join(seg.text if isinstance(seg, _Text) else values[seg.name] for seg in self._segments)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PathTemplate):
            return NotImplemented
        return self.source == other.source

    def __hash__(self) -> int:
        return hash(self.source)

    def __repr__(self) -> str:
        return f"PathTemplate({self.source!r})"
