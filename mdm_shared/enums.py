from __future__ import annotations

from enum import Enum


class TelemetryCategory(str, Enum):
    SYSTEM_INFO = "system_info"
    DISK_ENCRYPTION_INFO = "disk_encryption_info"
    PASSWORD_MANAGER_INFO = "password_manager_info"
    ANTIVIRUS_INFO = "antivirus_info"
    SCREEN_LOCK_INFO = "screen_lock_info"
    APPS_INFO = "apps_info"


class AccountType(str, Enum):
    USER = "user"
    SERVICE = "service"


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"
