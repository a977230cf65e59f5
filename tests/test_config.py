from __future__ import annotations

import json

import pytest

from mdm_server.config import load_config


@pytest.fixture()
def base_env(monkeypatch) -> None:
    for name in ("MDM_ENV", "MDM_ALLOW_SQLITE", "MDM_ENFORCE_HTTPS", "MDM_ADMINS_JSON", "GOOGLE_SERVICE_ACCOUNT_KEY_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./test.db")
    monkeypatch.setenv("MDM_JWT_SECRET", "secret")
    monkeypatch.setenv("MDM_ENV", "test")


def test_config_requires_jwt_secret(base_env, monkeypatch) -> None:
    monkeypatch.delenv("MDM_JWT_SECRET")
    with pytest.raises(ValueError):
        load_config()


def test_config_rejects_sqlite_in_production(base_env, monkeypatch) -> None:
    monkeypatch.setenv("MDM_ENV", "production")
    with pytest.raises(ValueError):
        load_config()


def test_config_normalizes_postgres_driver(base_env, monkeypatch) -> None:
    monkeypatch.setenv("MDM_ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql://mdm:pw@db:5432/mdm")
    cfg = load_config()
    assert cfg.database_url == "postgresql+psycopg://mdm:pw@db:5432/mdm"
    assert cfg.enforce_https is True


def test_config_defaults(base_env) -> None:
    cfg = load_config()
    assert cfg.login_token_ttl_seconds == 86400
    assert cfg.register_token_ttl_seconds == 43200
    assert cfg.directory_sync_interval_seconds == 86400
    assert cfg.recent_activity_hours == 24
    assert cfg.enforce_https is False
    assert cfg.google_service_account_key_file is None


def test_config_parses_admin_seeds(base_env, monkeypatch) -> None:
    monkeypatch.setenv(
        "MDM_ADMINS_JSON",
        json.dumps([{"email": "Root@Example.com", "password": "pw", "name": "Root"}, {"email": "no-password"}]),
    )
    cfg = load_config()
    assert [seed.email for seed in cfg.admin_seeds] == ["root@example.com"]


def test_config_rejects_non_list_admin_seeds(base_env, monkeypatch) -> None:
    monkeypatch.setenv("MDM_ADMINS_JSON", json.dumps({"email": "root@example.com"}))
    with pytest.raises(ValueError):
        load_config()
