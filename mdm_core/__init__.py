"""Pure compliance rules for agent telemetry."""

from mdm_core.compliance import (
    CATEGORY_RULES,
    category_compliant,
    device_status,
    first_error,
    grace_period_exceeded,
    item_error,
    owner_name,
    summarize_categories,
)

__all__ = [
    "CATEGORY_RULES",
    "category_compliant",
    "device_status",
    "first_error",
    "grace_period_exceeded",
    "item_error",
    "owner_name",
    "summarize_categories",
]
