"""Stored form of telemetry payloads.

Agents send arbitrary item lists per category; the store keeps them as
compact, key-sorted JSON text so identical reports serialize identically.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def encode_payload(items: Any) -> str:
    return json.dumps(_plain(items), sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def decode_payload(text: str | None) -> list[Any]:
    # Rows written by older agents may hold a bare object instead of a list.
    if not text:
        return []
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return []
    if isinstance(value, list):
        return value
    return [value]
