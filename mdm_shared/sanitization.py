from __future__ import annotations

import re
from typing import Any

from mdm_shared.constants import MAX_STRING_LEN

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(value: Any, max_len: int = MAX_STRING_LEN) -> str:
    text = _CONTROL_RE.sub("", str(value)).strip()
    if len(text) > max_len:
        return text[:max_len]
    return text


def sanitize_json(value: Any) -> Any:
    """Strip control characters from every string in an agent payload.

    Strings inside payloads are not truncated; app inventories routinely carry
    long identifiers and the payload is stored verbatim otherwise.
    """
    if isinstance(value, dict):
        return {_CONTROL_RE.sub("", str(key)): sanitize_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_json(item) for item in value]
    if isinstance(value, str):
        return _CONTROL_RE.sub("", value)
    if isinstance(value, bytes):
        return _CONTROL_RE.sub("", value.decode("utf-8", errors="replace"))
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    return _CONTROL_RE.sub("", str(value))
