"""Canonical store time.

Every timestamp persisted or compared by the server goes through this module.
The store runs on a fixed UTC+05:30 offset (no DST), so a plain
``datetime.timezone`` is enough.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta, timezone

logger = logging.getLogger("mdm_shared.timezone")

CANONICAL_OFFSET = timedelta(hours=5, minutes=30)
CANONICAL_TZ = timezone(CANONICAL_OFFSET, name="IST")


def now_canonical() -> datetime:
    return datetime.now(UTC).astimezone(CANONICAL_TZ)


def to_canonical(value: datetime) -> datetime:
    """Return ``value`` on the canonical offset.

    Naive values are what SQLite hands back for columns written as canonical
    wall-clock time, so they are tagged rather than converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=CANONICAL_TZ)
    return value.astimezone(CANONICAL_TZ)


def parse_report_timestamp(raw: str | None, fallback: datetime, max_future_skew: timedelta | None = None) -> datetime:
    """Parse an agent-supplied ISO-8601 timestamp.

    Strings without an offset are taken as UTC. Missing or unparsable values
    yield ``fallback`` normalized to the canonical offset, as do values later
    than ``fallback + max_future_skew`` when a skew allowance is given.
    """
    text = (raw or "").strip()
    if not text:
        return to_canonical(fallback)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("unparsable report timestamp %r; using receipt time", text)
        return to_canonical(fallback)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    if max_future_skew is not None and parsed > to_canonical(fallback) + max_future_skew:
        logger.warning("report timestamp %s is ahead of receipt time; using receipt time", text)
        return to_canonical(fallback)
    return parsed.astimezone(CANONICAL_TZ)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_canonical(value).isoformat()
