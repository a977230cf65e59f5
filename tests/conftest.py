from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from mdm_server.app import create_app
from mdm_server.config import AdminSeed, ServerConfig
from mdm_server.db import DirectoryRecord, ServerDatabase
from mdm_server.schemas import AdminPrincipal
from mdm_shared.enums import AccountType

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "ChangeMeNow!123"
JWT_SECRET = "test-jwt-secret"


@pytest.fixture()
def server_config(tmp_path: Path) -> ServerConfig:
    return ServerConfig(
        environment="test",
        database_url=f"sqlite:///{str(tmp_path / 'server.db')}",
        redis_url="redis://127.0.0.1:6399/0",
        host="127.0.0.1",
        port=3000,
        dev_enable_docs=False,
        enforce_https=False,
        jwt_secret=JWT_SECRET,
        jwt_issuer="test-issuer",
        jwt_audience="test-audience",
        max_payload_bytes=512 * 1024,
        directory_sync_enabled=False,
        directory_users_file=str(tmp_path / "users.json"),
        admin_seeds=[AdminSeed(email=ADMIN_EMAIL, password=ADMIN_PASSWORD, name="Root Admin")],
    )


@pytest.fixture()
def client(server_config: ServerConfig):
    app = create_app(server_config)
    with TestClient(app) as tc:
        yield tc


@pytest.fixture()
def db(client) -> ServerDatabase:
    return client.app.state.db


@pytest.fixture()
def admin_headers(client) -> dict[str, str]:
    admin = client.app.state.db.get_admin_by_email(ADMIN_EMAIL)
    token = client.app.state.auth.create_token(AdminPrincipal(id=admin.id, email=admin.email), ttl_seconds=3600)
    return {"Authorization": f"Bearer {token}"}


def seed_directory_user(
    db: ServerDatabase,
    email: str,
    name: str = "Directory User",
    account_type: AccountType = AccountType.USER,
) -> None:
    db.upsert_directory_users([DirectoryRecord(email=email, name=name, created_at=None, account_type=account_type)])


def agent_report(
    serial_no: str = "C02XK0AAJGH5",
    user: str = "jane.doe@example.com",
    *,
    timestamp: str | None = None,
    data: dict[str, Any] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    report: dict[str, Any] = {
        "user": user,
        "serial_no": serial_no,
        "os_type": "darwin",
        "os_version": "14.5",
        "computer_name": "Jane's MacBook Pro",
        "version": "1.4.0",
        "timestamp": timestamp or datetime.now(UTC).isoformat(),
        "data": data
        if data is not None
        else {
            "system_info": [{"hostname": "janes-mbp", "cpu_brand": "Apple M2", "physical_memory": "17179869184"}],
            "disk_encryption_info": [{"name": "FileVault", "encrypted": "1"}],
            "password_manager_info": [{"name": "1Password 8", "version": "8.10.30"}],
            "antivirus_info": [{"name": "XProtect", "status": "enabled"}],
            "screen_lock_info": [{"enabled": "1", "grace_period": "300"}],
            "apps_info": [{"name": "Slack", "bundle_version": "4.38"}],
        },
    }
    report.update(overrides)
    return report


@pytest.fixture()
def make_report():
    return agent_report


@pytest.fixture()
def directory_user(db):
    def _seed(email: str, name: str = "Directory User", account_type: AccountType = AccountType.USER) -> None:
        seed_directory_user(db, email, name=name, account_type=account_type)

    return _seed
