"""
Path mapping over JSON documents.

Used by the json_api fetcher (``pull_config.mapping``) and by the webhook
receiver (``push_config.mapping``) to reshape third-party payloads into the
object a widget expects.

Path syntax: ``$.current.temp``, ``$.list[0].name``, ``$.articles[*].title``.
The leading ``$`` is optional. ``[*]`` fans out over a list and yields a list.

Mapping syntax:
    {
        "temperature": "$.current.temp",                 # path
        "location": {"city": "$.name"},                  # nested object
        "items": {"path": "$.articles[*]",               # list of objects
                  "fields": {"title": "$.title"}},
        "unit": {"path": "$.unit", "default": "C"},      # path with default
    }
"""
import re
from typing import Any, Dict, List

_TOKEN_RE = re.compile(r"\.([^.\[\]]+)|\[(\d+|\*)\]|^([^.\[\]$][^.\[\]]*)")

_MISSING = object()


class PathError(ValueError):
    pass


def _tokenize(path: str) -> List[Any]:
    if not isinstance(path, str):
        raise PathError(f"Path must be a string, got {type(path).__name__}")
    body = path.strip()
    if body.startswith("$"):
        body = body[1:]
    tokens: List[Any] = []
    pos = 0
    while pos < len(body):
        match = _TOKEN_RE.match(body, pos)
        if not match or match.end() == pos:
            raise PathError(f"Invalid path syntax: {path!r}")
        key, index, bare = match.groups()
        if key is not None:
            tokens.append(key)
        elif bare is not None:
            tokens.append(bare)
        elif index == "*":
            tokens.append("*")
        else:
            tokens.append(int(index))
        pos = match.end()
    return tokens


def _walk(node: Any, tokens: List[Any]) -> Any:
    for i, token in enumerate(tokens):
        if node is _MISSING or node is None:
            return _MISSING
        if token == "*":
            if not isinstance(node, list):
                return _MISSING
            rest = tokens[i + 1:]
            results = [_walk(item, rest) for item in node]
            return [r for r in results if r is not _MISSING]
        if isinstance(token, int):
            if not isinstance(node, list) or token >= len(node):
                return _MISSING
            node = node[token]
        else:
            if not isinstance(node, dict) or token not in node:
                return _MISSING
            node = node[token]
    return node


def extract(document: Any, path: str, default: Any = None) -> Any:
    """Resolve a path against a document, returning default when absent."""
    value = _walk(document, _tokenize(path))
    return default if value is _MISSING else value


def apply_mapping(document: Any, mapping: Dict[str, Any]) -> Dict[str, Any]:
    """Build a new object from a document according to a mapping."""
    result: Dict[str, Any] = {}
    for key, spec in mapping.items():
        if isinstance(spec, str):
            result[key] = extract(document, spec)
        elif isinstance(spec, dict) and "path" in spec:
            value = extract(document, spec["path"], spec.get("default"))
            sub_fields = spec.get("fields")
            if sub_fields and isinstance(value, list):
                value = [apply_mapping(item, sub_fields) for item in value]
            elif sub_fields and isinstance(value, dict):
                value = apply_mapping(value, sub_fields)
            result[key] = value
        elif isinstance(spec, dict):
            result[key] = apply_mapping(document, spec)
        else:
            # Literal constant
            result[key] = spec
    return result


def validate_mapping(mapping: Any) -> None:
    """
    Check that every path in a mapping parses.

    Raises:
        PathError: On the first malformed path
    """
    if not isinstance(mapping, dict):
        raise PathError("Mapping must be an object")
    for spec in mapping.values():
        if isinstance(spec, str):
            _tokenize(spec)
        elif isinstance(spec, dict) and "path" in spec:
            _tokenize(spec["path"])
            if spec.get("fields"):
                validate_mapping(spec["fields"])
        elif isinstance(spec, dict):
            validate_mapping(spec)


def as_object(payload: Any, key: str = "items") -> Dict[str, Any]:
    """Cache entries hold JSON objects; wrap anything else under a key."""
    if isinstance(payload, dict):
        return payload
    return {key: payload}
