"""Turn store rows into the JSON shapes the dashboard consumes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from mdm_core.compliance import device_status, owner_name
from mdm_server.db import DeviceRow
from mdm_server.models import Admin, Device, DeviceSummary, DirectoryUser, TelemetryRecordMixin
from mdm_shared.enums import TelemetryCategory
from mdm_shared.serialization import decode_payload
from mdm_shared.timezone import isoformat

_SECURITY_FIELDS = {
    "password_manager": TelemetryCategory.PASSWORD_MANAGER_INFO,
    "screen_lock": TelemetryCategory.SCREEN_LOCK_INFO,
    "antivirus": TelemetryCategory.ANTIVIRUS_INFO,
    "disk_encryption": TelemetryCategory.DISK_ENCRYPTION_INFO,
}


def _status_basis(device: Device, summary: DeviceSummary | None) -> datetime | None:
    if summary is not None and summary.last_report is not None:
        return summary.last_report
    return device.last_seen


def live_status(device: Device, summary: DeviceSummary | None, now: datetime | None = None) -> str:
    return device_status(_status_basis(device, summary), now=now).value


def device_payload(device: Device, summary: DeviceSummary | None = None, now: datetime | None = None) -> dict[str, Any]:
    return {
        "id": device.id,
        "serial_no": device.serial_no,
        "user_email": device.user_email,
        "computer_name": device.computer_name,
        "os_type": device.os_type,
        "os_version": device.os_version,
        "agent_version": device.agent_version,
        "last_seen": isoformat(device.last_seen),
        "status": live_status(device, summary, now=now),
        "created_at": isoformat(device.created_at),
        "updated_at": isoformat(device.updated_at),
    }


def summary_payload(summary: DeviceSummary | None) -> dict[str, Any] | None:
    if summary is None:
        return None
    payload: dict[str, Any] = {"device_id": summary.device_id, "last_report": isoformat(summary.last_report)}
    for category in TelemetryCategory:
        payload[category.value] = summary.flag(category)
    payload["updated_at"] = isoformat(summary.updated_at)
    return payload


def security_status(summary: DeviceSummary | None) -> dict[str, bool]:
    if summary is None:
        return {name: False for name in _SECURITY_FIELDS}
    return {name: summary.flag(category) for name, category in _SECURITY_FIELDS.items()}


def telemetry_payload(record: TelemetryRecordMixin | None, category: TelemetryCategory) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "id": record.id,
        "device_id": record.device_id,
        "data_type": category.value,
        "timestamp": isoformat(record.timestamp),
        "data": decode_payload(record.data),
        "error": record.error,
        "created_at": isoformat(record.created_at),
    }


def table_row_payload(row: DeviceRow, now: datetime | None = None) -> dict[str, Any]:
    """Dashboard table row: device fields plus compliance flags and latest system info."""
    payload = device_payload(row.device, row.summary, now=now)
    payload["owner_name"] = owner_name(row.device.user_email)
    payload["last_report"] = isoformat(row.summary.last_report) if row.summary is not None else None
    for category in TelemetryCategory:
        payload[f"has_{category.value}"] = row.summary.flag(category) if row.summary is not None else False
    payload["security_status"] = security_status(row.summary)
    if row.system_info is not None:
        payload["system_info_data"] = decode_payload(row.system_info.data)
        payload["system_info_timestamp"] = isoformat(row.system_info.timestamp)
    else:
        payload["system_info_data"] = None
        payload["system_info_timestamp"] = None
    return payload


def directory_user_payload(user: DirectoryUser) -> dict[str, Any]:
    return {
        "gid": user.gid,
        "email": user.email,
        "name": user.name,
        "created_at": isoformat(user.created_at),
        "account_type": user.account_type,
        "updated_at": isoformat(user.updated_at),
    }


def admin_payload(admin: Admin) -> dict[str, Any]:
    return {
        "id": admin.id,
        "email": admin.email,
        "name": admin.name,
        "created_at": isoformat(admin.created_at),
    }
