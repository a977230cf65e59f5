from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator

from sqlalchemy import Engine, create_engine, delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from mdm_server.config import AdminSeed
from mdm_server.models import (
    TELEMETRY_MODELS,
    Admin,
    Base,
    Device,
    DeviceSummary,
    DirectoryUser,
    SystemInfo,
    TelemetryRecordMixin,
)
from mdm_shared.enums import AccountType, TelemetryCategory
from mdm_shared.serialization import encode_payload
from mdm_shared.timezone import now_canonical, to_canonical


@dataclass(frozen=True, slots=True)
class DirectoryRecord:
    email: str
    name: str
    created_at: datetime | None
    account_type: AccountType = AccountType.USER


@dataclass(slots=True)
class DeviceRow:
    device: Device
    summary: DeviceSummary | None
    system_info: SystemInfo | None = None


def _like(term: str) -> str:
    return f"%{term}%"


def _device_search(term: str):
    pattern = _like(term)
    return or_(
        Device.serial_no.ilike(pattern),
        Device.user_email.ilike(pattern),
        Device.computer_name.ilike(pattern),
    )


def _same_instant(left: datetime | None, right: datetime | None) -> bool:
    if left is None or right is None:
        return left is None and right is None
    return to_canonical(left).replace(microsecond=0) == to_canonical(right).replace(microsecond=0)


class ServerDatabase:
    def __init__(self, database_url: str) -> None:
        connect_args: dict[str, Any] = {}
        if database_url.lower().startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True, connect_args=connect_args)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True
        )

    def init_for_tests(self) -> None:
        Base.metadata.create_all(self.engine)

    def ping(self) -> None:
        with self.session() as db:
            db.execute(select(1))

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _insert(self, model: type[Base]):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise RuntimeError(f"unsupported database dialect: {dialect}")

    # -- admins -----------------------------------------------------------

    def seed_admins(self, admins: list[AdminSeed], hash_password: Callable[[str], str]) -> None:
        if not admins:
            return
        with self.session() as db:
            for item in admins:
                existing = db.execute(select(Admin).where(Admin.email == item.email)).scalar_one_or_none()
                hashed = hash_password(item.password)
                if existing is None:
                    db.add(Admin(email=item.email, password_hash=hashed, name=item.name))
                else:
                    existing.password_hash = hashed
                    existing.name = item.name or existing.name

    def create_admin(self, email: str, password_hash: str, name: str | None) -> Admin:
        with self.session() as db:
            admin = Admin(email=email, password_hash=password_hash, name=name)
            db.add(admin)
            db.flush()
            return admin

    def get_admin(self, admin_id: int) -> Admin | None:
        with self.session() as db:
            return db.execute(select(Admin).where(Admin.id == admin_id)).scalar_one_or_none()

    def get_admin_by_email(self, email: str) -> Admin | None:
        with self.session() as db:
            return db.execute(select(Admin).where(Admin.email == email)).scalar_one_or_none()

    def list_admins(self) -> list[Admin]:
        with self.session() as db:
            return list(db.execute(select(Admin).order_by(Admin.created_at.desc(), Admin.id.desc())).scalars())

    def delete_admin(self, admin_id: int) -> bool:
        with self.session() as db:
            result = db.execute(delete(Admin).where(Admin.id == admin_id))
            return bool(result.rowcount)

    # -- devices ----------------------------------------------------------

    def get_device(self, device_id: int) -> Device | None:
        with self.session() as db:
            return db.execute(select(Device).where(Device.id == device_id)).scalar_one_or_none()

    def get_device_by_serial(self, serial_no: str) -> Device | None:
        with self.session() as db:
            return db.execute(select(Device).where(Device.serial_no == serial_no)).scalar_one_or_none()

    def get_device_by_email(self, email: str) -> Device | None:
        with self.session() as db:
            return db.execute(
                select(Device).where(func.lower(Device.user_email) == email.lower()).order_by(Device.id.asc()).limit(1)
            ).scalar_one_or_none()

    def upsert_device(
        self,
        *,
        serial_no: str,
        user_email: str,
        computer_name: str | None,
        os_type: str,
        os_version: str | None,
        agent_version: str | None,
        last_seen: datetime,
        status: str,
    ) -> int:
        now = now_canonical()
        values = {
            "user_email": user_email,
            "computer_name": computer_name,
            "os_type": os_type,
            "os_version": os_version or "unknown",
            "agent_version": agent_version,
            "last_seen": last_seen,
            "status": status,
            "updated_at": now,
        }
        stmt = self._insert(Device).values(serial_no=serial_no, created_at=now, **values)
        stmt = stmt.on_conflict_do_update(index_elements=[Device.serial_no], set_=values).returning(Device.id)
        with self.session() as db:
            return int(db.execute(stmt).scalar_one())

    def list_devices(self, page: int, limit: int, search: str | None = None) -> tuple[list[DeviceRow], int]:
        offset = (page - 1) * limit
        with self.session() as db:
            stmt = select(Device, DeviceSummary).outerjoin(DeviceSummary, DeviceSummary.device_id == Device.id)
            count_stmt = select(func.count(Device.id))
            if search:
                stmt = stmt.where(_device_search(search))
                count_stmt = count_stmt.where(_device_search(search))
            total = int(db.execute(count_stmt).scalar_one())
            rows = db.execute(
                stmt.order_by(Device.last_seen.desc().nulls_last(), Device.created_at.desc()).offset(offset).limit(limit)
            ).all()
        return [DeviceRow(device=device, summary=summary) for device, summary in rows], total

    def device_table(self, search: str | None = None, os_type: str | None = None) -> list[DeviceRow]:
        ranked = select(
            SystemInfo.id.label("record_id"),
            SystemInfo.device_id.label("device_id"),
            func.row_number()
            .over(partition_by=SystemInfo.device_id, order_by=(SystemInfo.timestamp.desc(), SystemInfo.id.desc()))
            .label("rank"),
        ).subquery()
        latest_system = select(ranked.c.record_id, ranked.c.device_id).where(ranked.c.rank == 1).subquery()
        stmt = (
            select(Device, DeviceSummary, SystemInfo)
            .outerjoin(DeviceSummary, DeviceSummary.device_id == Device.id)
            .outerjoin(latest_system, latest_system.c.device_id == Device.id)
            .outerjoin(SystemInfo, SystemInfo.id == latest_system.c.record_id)
        )
        if search:
            stmt = stmt.where(_device_search(search))
        if os_type:
            stmt = stmt.where(Device.os_type == os_type)
        with self.session() as db:
            rows = db.execute(stmt.order_by(Device.last_seen.desc().nulls_last(), Device.id.desc())).all()
        return [DeviceRow(device=device, summary=summary, system_info=system) for device, summary, system in rows]

    def dashboard_stats(self, now: datetime, recent_hours: int, online_window: timedelta) -> dict[str, Any]:
        online_cutoff = now - online_window
        recent_cutoff = now - timedelta(hours=recent_hours)
        with self.session() as db:
            total = int(db.execute(select(func.count(Device.id))).scalar_one())
            online = int(
                db.execute(
                    select(func.count(Device.id))
                    .outerjoin(DeviceSummary, DeviceSummary.device_id == Device.id)
                    .where(func.coalesce(DeviceSummary.last_report, Device.last_seen) >= online_cutoff)
                ).scalar_one()
            )
            recent = int(
                db.execute(select(func.count(Device.id)).where(Device.last_seen >= recent_cutoff)).scalar_one()
            )
            by_os = db.execute(
                select(Device.os_type, func.count(Device.id)).group_by(Device.os_type).order_by(Device.os_type.asc())
            ).all()
        return {
            "total": total,
            "online": online,
            "recent_activity": recent,
            "by_os": [{"os_type": os_type, "count": int(count)} for os_type, count in by_os],
        }

    # -- telemetry --------------------------------------------------------

    def append_telemetry(
        self,
        device_id: int,
        category: TelemetryCategory,
        timestamp: datetime,
        items: list[Any],
        error: str | None,
    ) -> int:
        model = TELEMETRY_MODELS[category]
        with self.session() as db:
            record = model(device_id=device_id, timestamp=timestamp, data=encode_payload(items), error=error)
            db.add(record)
            db.flush()
            return int(record.id)

    def latest_telemetry(self, device_id: int, category: TelemetryCategory) -> TelemetryRecordMixin | None:
        model = TELEMETRY_MODELS[category]
        with self.session() as db:
            return db.execute(
                select(model)
                .where(model.device_id == device_id)
                .order_by(model.timestamp.desc(), model.id.desc())
                .limit(1)
            ).scalar_one_or_none()

    def latest_telemetry_all(self, device_id: int) -> dict[TelemetryCategory, TelemetryRecordMixin | None]:
        return {category: self.latest_telemetry(device_id, category) for category in TelemetryCategory}

    def telemetry_history(
        self,
        device_id: int,
        category: TelemetryCategory,
        page: int,
        limit: int,
    ) -> tuple[list[TelemetryRecordMixin], int]:
        model = TELEMETRY_MODELS[category]
        offset = (page - 1) * limit
        with self.session() as db:
            total = int(
                db.execute(select(func.count(model.id)).where(model.device_id == device_id)).scalar_one()
            )
            rows = list(
                db.execute(
                    select(model)
                    .where(model.device_id == device_id)
                    .order_by(model.timestamp.desc(), model.id.desc())
                    .offset(offset)
                    .limit(limit)
                ).scalars()
            )
        return rows, total

    def count_telemetry(self, device_id: int, category: TelemetryCategory) -> int:
        model = TELEMETRY_MODELS[category]
        with self.session() as db:
            return int(db.execute(select(func.count(model.id)).where(model.device_id == device_id)).scalar_one())

    # -- compliance summary -----------------------------------------------

    def upsert_summary(self, device_id: int, last_report: datetime, flags: dict[TelemetryCategory, bool]) -> None:
        now = now_canonical()
        values: dict[str, Any] = {category.value: bool(flags.get(category, False)) for category in TelemetryCategory}
        values["last_report"] = last_report
        values["updated_at"] = now
        stmt = self._insert(DeviceSummary).values(device_id=device_id, created_at=now, **values)
        stmt = stmt.on_conflict_do_update(index_elements=[DeviceSummary.device_id], set_=values)
        with self.session() as db:
            db.execute(stmt)

    def get_summary(self, device_id: int) -> DeviceSummary | None:
        with self.session() as db:
            return db.execute(select(DeviceSummary).where(DeviceSummary.device_id == device_id)).scalar_one_or_none()

    def count_summaries(self, device_id: int) -> int:
        with self.session() as db:
            return int(
                db.execute(select(func.count()).select_from(DeviceSummary).where(DeviceSummary.device_id == device_id))
                .scalar_one()
            )

    # -- directory users --------------------------------------------------

    def get_directory_user(self, email: str) -> DirectoryUser | None:
        with self.session() as db:
            return db.execute(
                select(DirectoryUser).where(func.lower(DirectoryUser.email) == email.lower())
            ).scalar_one_or_none()

    def upsert_directory_users(self, records: list[DirectoryRecord]) -> int:
        if not records:
            return 0
        written = 0
        with self.session() as db:
            emails = [record.email for record in records]
            existing = {
                row.email: row
                for row in db.execute(select(DirectoryUser).where(DirectoryUser.email.in_(emails))).scalars()
            }
            for record in records:
                account_type = record.account_type.value
                created_at = to_canonical(record.created_at) if record.created_at is not None else None
                row = existing.get(record.email)
                if row is None:
                    row = DirectoryUser(
                        email=record.email,
                        name=record.name,
                        created_at=created_at,
                        account_type=account_type,
                    )
                    db.add(row)
                    existing[record.email] = row
                    written += 1
                    continue
                unchanged = (
                    row.name == record.name
                    and _same_instant(row.created_at, created_at)
                    and row.account_type == account_type
                )
                if unchanged:
                    continue
                row.name = record.name
                row.created_at = created_at
                row.account_type = account_type
                written += 1
        return written

    def _user_filter(self, search: str | None):
        if not search:
            return None
        pattern = _like(search)
        return or_(DirectoryUser.email.ilike(pattern), DirectoryUser.name.ilike(pattern))

    def list_directory_users(self, search: str | None, limit: int, offset: int) -> list[DirectoryUser]:
        stmt = select(DirectoryUser)
        condition = self._user_filter(search)
        if condition is not None:
            stmt = stmt.where(condition)
        with self.session() as db:
            return list(db.execute(stmt.order_by(DirectoryUser.email.asc()).offset(offset).limit(limit)).scalars())

    def count_directory_users(self, search: str | None = None) -> int:
        stmt = select(func.count(DirectoryUser.gid))
        condition = self._user_filter(search)
        if condition is not None:
            stmt = stmt.where(condition)
        with self.session() as db:
            return int(db.execute(stmt).scalar_one())

    def update_account_type(self, gid: int, account_type: AccountType) -> bool:
        with self.session() as db:
            result = db.execute(
                update(DirectoryUser)
                .where(DirectoryUser.gid == gid)
                .values(account_type=account_type.value, updated_at=now_canonical())
            )
            return bool(result.rowcount)

    def delete_directory_user(self, gid: int) -> bool:
        with self.session() as db:
            result = db.execute(delete(DirectoryUser).where(DirectoryUser.gid == gid))
            return bool(result.rowcount)
