from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from mdm_shared.enums import TelemetryCategory
from mdm_shared.timezone import now_canonical


class Base(DeclarativeBase):
    pass


class Admin(Base):
    __tablename__ = "admins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(512), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_canonical, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_canonical, onupdate=now_canonical, nullable=False
    )


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    serial_no: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    computer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    os_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    os_version: Mapped[str | None] = mapped_column(String(100), nullable=True)
    agent_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="unknown")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_canonical, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_canonical, onupdate=now_canonical, nullable=False
    )


class TelemetryRecordMixin:
    """Columns shared by every per-category telemetry table."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    error: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_canonical, nullable=False)

    @declared_attr
    def device_id(cls) -> Mapped[int]:
        return mapped_column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        return (Index(f"idx_{cls.__tablename__}_device_ts", "device_id", "timestamp"),)


class SystemInfo(TelemetryRecordMixin, Base):
    __tablename__ = "system_info"


class DiskEncryptionInfo(TelemetryRecordMixin, Base):
    __tablename__ = "disk_encryption_info"


class PasswordManagerInfo(TelemetryRecordMixin, Base):
    __tablename__ = "password_manager_info"


class AntivirusInfo(TelemetryRecordMixin, Base):
    __tablename__ = "antivirus_info"


class ScreenLockInfo(TelemetryRecordMixin, Base):
    __tablename__ = "screen_lock_info"


class AppsInfo(TelemetryRecordMixin, Base):
    __tablename__ = "apps_info"


TELEMETRY_MODELS: dict[TelemetryCategory, type[TelemetryRecordMixin]] = {
    TelemetryCategory.SYSTEM_INFO: SystemInfo,
    TelemetryCategory.DISK_ENCRYPTION_INFO: DiskEncryptionInfo,
    TelemetryCategory.PASSWORD_MANAGER_INFO: PasswordManagerInfo,
    TelemetryCategory.ANTIVIRUS_INFO: AntivirusInfo,
    TelemetryCategory.SCREEN_LOCK_INFO: ScreenLockInfo,
    TelemetryCategory.APPS_INFO: AppsInfo,
}


class DeviceSummary(Base):
    __tablename__ = "device_summary"

    device_id: Mapped[int] = mapped_column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), primary_key=True)
    last_report: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    system_info: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    disk_encryption_info: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    password_manager_info: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    antivirus_info: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    screen_lock_info: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    apps_info: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_canonical, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_canonical, onupdate=now_canonical, nullable=False
    )

    def flag(self, category: TelemetryCategory) -> bool:
        return bool(getattr(self, category.value))


class DirectoryUser(Base):
    __tablename__ = "users"

    gid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    account_type: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_canonical, onupdate=now_canonical, nullable=False
    )
