"""
Variable Resolver.

Looks up path expressions such as ``$.data.items[0].title`` and renders
``{{name}}`` / ``${$.path}`` templates against an execution's state.

Resolution never raises on missing data: an unknown path resolves to
``None``. All functions here are pure.
"""

from typing import Any, Dict, List, Mapping, Optional, Union
import json
import re


PATH_PREFIX = "$."

# First segments a literal `$.` string must start with to be read as a path
PATH_ROOTS = frozenset({
    "data", "input", "nodeOutputs", "context", "metadata",
    "executionId", "workflowId", "result",
})

# One segment of a path: `.name`, `name`, `[0]`, `['key']` or `["key"]`
_SEGMENT_RE = re.compile(
    r"""\.?(?P<name>[A-Za-z0-9_\-]+)"""
    r"""|\[\s*(?:(?P<index>-?\d+)|'(?P<single>[^']*)'|"(?P<double>[^"]*)")\s*\]"""
)

# `{{ name }}` and `${$.path}` tokens inside a string
_TOKEN_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}|\$\{\s*(\$\.[^{}]+?)\s*\}")

Segment = Union[str, int]


def parse_path(expr: str) -> Optional[List[Segment]]:
    """
    Split a path expression into segments.

    Accepts ``$.data.x``, ``data.x``, ``items[0]``, ``items.0`` and quoted
    bracket keys. Returns ``None`` when the expression is not a path.
    """
    if not isinstance(expr, str):
        return None

    text = expr.strip()
    if text == "$":
        return []
    if text.startswith(PATH_PREFIX):
        text = text[len(PATH_PREFIX):]
    if not text:
        return None

    segments: List[Segment] = []
    pos = 0
    while pos < len(text):
        match = _SEGMENT_RE.match(text, pos)
        if not match or match.end() == pos:
            return None
        if match.group("name") is not None:
            segments.append(match.group("name"))
        elif match.group("index") is not None:
            segments.append(int(match.group("index")))
        elif match.group("single") is not None:
            segments.append(match.group("single"))
        else:
            segments.append(match.group("double"))
        pos = match.end()

    return segments


def is_path(value: Any) -> bool:
    """
    Whether ``value`` is a complete ``$.`` path expression over a known root.

    Literal text that merely looks like a path, such as a price of ``"$.99"``,
    is not a path.
    """
    if not isinstance(value, str) or not value.strip().startswith(PATH_PREFIX):
        return False
    segments = parse_path(value)
    return bool(segments) and segments[0] in PATH_ROOTS


def _step(current: Any, segment: Segment) -> Any:
    if current is None:
        return None

    if isinstance(current, Mapping):
        if segment in current:
            return current[segment]
        if isinstance(segment, int) and str(segment) in current:
            return current[str(segment)]
        return None

    if isinstance(current, (list, tuple, str)):
        if isinstance(segment, str):
            if segment == "length":
                return len(current)
            if not segment.lstrip("-").isdigit():
                return None
            segment = int(segment)
        try:
            return current[segment]
        except IndexError:
            return None

    return None


def lookup(segments: List[Segment], root: Any) -> Any:
    """Walk ``segments`` from ``root``; ``None`` as soon as a step is missing."""
    current = root
    for segment in segments:
        current = _step(current, segment)
        if current is None:
            return None
    return current


def as_scope(source: Any) -> Mapping[str, Any]:
    """
    Normalize a resolution source into a mapping.

    Execution states expose ``resolution_scope()``; plain mappings are used
    as-is.
    """
    if source is None:
        return {}
    if isinstance(source, Mapping):
        return source
    scope = getattr(source, "resolution_scope", None)
    if callable(scope):
        return scope()
    raise TypeError(f"Cannot resolve variables against {type(source).__name__}")


def resolve(path: str, source: Any) -> Any:
    """
    Resolve a single path expression.

    Args:
        path: Path such as ``$.data.user.name`` or ``result.branch``
        source: Execution state or mapping with the resolution roots

    Returns:
        The value found, or ``None`` if any part of the path is missing
    """
    segments = parse_path(path)
    if segments is None:
        return None
    return lookup(segments, as_scope(source))


def resolve_reference(name: str, source: Any) -> Any:
    """
    Resolve a variable reference as used in templates and transform ops.

    Bare names (`user.name`) are relative to `data`; `$.` names are absolute.
    """
    scope = as_scope(source)
    if name.startswith(PATH_PREFIX):
        return resolve(name, scope)

    segments = parse_path(name)
    if segments is None:
        return None
    value = lookup(segments, scope.get("data"))
    if value is None:
        value = lookup(segments, scope)
    return value


def stringify(value: Any) -> str:
    """Render a resolved value for interpolation into text."""
    if value is None:
        return ""
    if isinstance(value, (dict, list, bool)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def render_template(text: str, source: Any) -> Any:
    """
    Render a template string.

    A string that is exactly one path or one token resolves to the raw value
    so types survive (``"{{items}}"`` stays a list). Anything else is
    interpolated: missing values become ``""``, objects become JSON.
    """
    scope = as_scope(source)

    if is_path(text):
        return resolve(text, scope)

    tokens = list(_TOKEN_RE.finditer(text))
    if not tokens:
        return text

    if len(tokens) == 1 and tokens[0].span() == (0, len(text)):
        match = tokens[0]
        return resolve_reference(match.group(1) or match.group(2), scope)

    def _replace(match: "re.Match[str]") -> str:
        return stringify(resolve_reference(match.group(1) or match.group(2), scope))

    return _TOKEN_RE.sub(_replace, text)


def resolve_all(value: Any, source: Any) -> Any:
    """
    Resolve every path and template inside ``value``.

    Args:
        value: A string, list, dict or scalar, nested arbitrarily
        source: Execution state or mapping with the resolution roots

    Returns:
        A new structure of the same shape with references substituted
    """
    scope = as_scope(source)

    if isinstance(value, str):
        return render_template(value, scope)
    if isinstance(value, list):
        return [resolve_all(item, scope) for item in value]
    if isinstance(value, dict):
        return {key: resolve_all(item, scope) for key, item in value.items()}
    return value


def localize(value: Any, language: Optional[str] = None) -> Any:
    """
    Pick the right language out of a ``{"en": ..., "de": ...}`` map.

    Falls back to English, then to the first entry. Non-mapping values are
    returned unchanged.
    """
    if not isinstance(value, dict) or not value:
        return value
    if language and language in value:
        return value[language]
    if "en" in value:
        return value["en"]
    return next(iter(value.values()))


def set_path(target: Dict[str, Any], path: str, value: Any) -> None:
    """
    Assign ``value`` at a dotted ``path`` inside ``target``.

    Missing intermediate objects are created; ``$.data.`` and ``data.``
    prefixes are accepted and ignored.
    """
    key = path.strip()
    for prefix in ("$.data.", "data.", PATH_PREFIX):
        if key.startswith(prefix):
            key = key[len(prefix):]
            break

    parts = key.split(".")
    current = target
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value

