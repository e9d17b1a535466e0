from __future__ import annotations

from enum import Enum
from pathlib import PurePath
from typing import Any

import rfc8785
from pydantic import BaseModel


def _normalize(value: Any) -> bool | int | float | str | None | list[Any] | dict[str, Any]:
    """Convert reports, paths and enums into JSON primitives for rfc8785.

    Raises:
        TypeError: If value contains a type with no JSON representation.
    """
    if isinstance(value, (bool, int, float, str, type(None))):
        return value
    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, Enum):
        return _normalize(value.value)
    if isinstance(value, PurePath):
        return str(value)
    raise TypeError(f"Cannot serialize type {type(value).__name__} to canonical JSON")


def to_canonical_json(value: Any) -> str:
    """Deterministic RFC 8785 JSON for a report or plain structure."""
    return rfc8785.dumps(_normalize(value)).decode("utf-8")
