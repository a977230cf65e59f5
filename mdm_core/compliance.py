from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from mdm_shared.constants import (
    NO_DATA_STATUS_PREFIX,
    ONLINE_WINDOW_SECONDS,
    QUERY_FAILED_STATUS,
    SCREEN_LOCK_MAX_GRACE_SECONDS,
)
from mdm_shared.enums import DeviceStatus, TelemetryCategory
from mdm_shared.timezone import now_canonical, to_canonical

CategoryRule = Callable[[list[Any]], bool]


def item_error(item: Any) -> str | None:
    """Return the item's error status, or None for a usable item."""
    if not isinstance(item, Mapping):
        return None
    status = item.get("status")
    if not isinstance(status, str):
        return None
    if status == QUERY_FAILED_STATUS or status.startswith(NO_DATA_STATUS_PREFIX):
        return status
    return None


def first_error(items: list[Any]) -> str | None:
    for item in items:
        error = item_error(item)
        if error is not None:
            return error
    return None


def items_error_free(items: list[Any]) -> bool:
    return bool(items) and first_error(items) is None


def parse_grace_period(item: Any) -> int | None:
    if not isinstance(item, Mapping):
        return None
    raw = item.get("grace_period")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def grace_period_exceeded(items: list[Any]) -> bool:
    """True when any item reports a grace period above one hour.

    Items whose grace period is missing or not an integer do not count either
    way.
    """
    for item in items:
        seconds = parse_grace_period(item)
        if seconds is not None and seconds > SCREEN_LOCK_MAX_GRACE_SECONDS:
            return True
    return False


def _screen_lock_compliant(items: list[Any]) -> bool:
    return items_error_free(items) and not grace_period_exceeded(items)


CATEGORY_RULES: dict[TelemetryCategory, CategoryRule] = {
    TelemetryCategory.SYSTEM_INFO: items_error_free,
    TelemetryCategory.DISK_ENCRYPTION_INFO: items_error_free,
    TelemetryCategory.PASSWORD_MANAGER_INFO: items_error_free,
    TelemetryCategory.ANTIVIRUS_INFO: items_error_free,
    TelemetryCategory.SCREEN_LOCK_INFO: _screen_lock_compliant,
    TelemetryCategory.APPS_INFO: items_error_free,
}


def category_compliant(category: TelemetryCategory, items: list[Any]) -> bool:
    return CATEGORY_RULES[category](items)


def summarize_categories(
    reported: Mapping[TelemetryCategory, list[Any]],
    stored: set[TelemetryCategory] | None = None,
) -> dict[TelemetryCategory, bool]:
    """Compute one summary flag per category.

    ``stored`` restricts compliance to categories whose record was actually
    written; ``None`` means every reported category was stored.
    """
    flags: dict[TelemetryCategory, bool] = {}
    for category in TelemetryCategory:
        items = reported.get(category) or []
        if stored is not None and category not in stored:
            flags[category] = False
            continue
        flags[category] = category_compliant(category, items)
    return flags


def device_status(ts: datetime | None, now: datetime | None = None) -> DeviceStatus:
    if ts is None:
        return DeviceStatus.UNKNOWN
    current = to_canonical(now) if now is not None else now_canonical()
    if current - to_canonical(ts) <= timedelta(seconds=ONLINE_WINDOW_SECONDS):
        return DeviceStatus.ONLINE
    return DeviceStatus.OFFLINE


def owner_name(email: str) -> str:
    local = email.split("@", 1)[0]
    if "." not in local:
        return local.title()
    return " ".join(part.title() for part in local.split(".") if part)
