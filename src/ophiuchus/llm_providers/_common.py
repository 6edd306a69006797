"""Helpers shared by the bundled provider adapters."""

from __future__ import annotations

from typing import Any, Dict, Mapping


def require_str(value: str, *, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")
    return stripped


def coerce_options(value: Mapping[str, Any] | None) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError("default options must be a mapping of keyword arguments")
    return dict(value)


def extract_attr(container: Any, name: str, default: Any | None = None) -> Any:
    """Read ``name`` from SDK objects and plain mappings alike."""

    if isinstance(container, Mapping):
        return container.get(name, default)
    return getattr(container, name, default)


_USAGE_FIELDS = (
    "prompt_tokens",
    "completion_tokens",
    "total_tokens",
    "input_tokens",
    "output_tokens",
    "prompt_token_count",
    "candidates_token_count",
    "total_token_count",
)


def usage_mapping(usage: Any) -> Dict[str, int]:
    """Flatten an SDK usage object into integer token counters."""

    if usage is None:
        return {}
    counters: Dict[str, int] = {}
    for name in _USAGE_FIELDS:
        value = extract_attr(usage, name)
        if isinstance(value, int) and not isinstance(value, bool):
            counters[name] = value
    return counters
