from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from mdm_shared.constants import MAX_PAYLOAD_BYTES


@dataclass(frozen=True, slots=True)
class AdminSeed:
    email: str
    password: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ServerConfig:
    environment: str
    database_url: str
    redis_url: str
    host: str
    port: int
    dev_enable_docs: bool
    enforce_https: bool
    jwt_secret: str
    jwt_issuer: str = "mdm-server"
    jwt_audience: str = "mdm-admins"
    login_token_ttl_seconds: int = 24 * 60 * 60
    register_token_ttl_seconds: int = 12 * 60 * 60
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    max_payload_bytes: int = MAX_PAYLOAD_BYTES
    ingest_rate_limit_per_minute: int = 120
    login_rate_limit_per_minute: int = 20
    recent_activity_hours: int = 24
    directory_sync_enabled: bool = True
    directory_sync_interval_seconds: int = 24 * 60 * 60
    directory_users_file: str = "test_dir/users.json"
    google_service_account_key_file: str | None = None
    google_workspace_admin_email: str | None = None
    google_workspace_customer: str = "my_customer"
    metrics_token: str | None = None
    admin_seeds: list[AdminSeed] = field(default_factory=list)


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"{name} is required")
    return value


def _optional_env(name: str) -> str | None:
    return os.getenv(name, "").strip() or None


def _parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_list(raw: str | None, default: list[str]) -> list[str]:
    if raw is None or not raw.strip():
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_admin_seeds() -> list[AdminSeed]:
    raw = os.getenv("MDM_ADMINS_JSON", "").strip()
    if not raw:
        return []
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        raise ValueError("MDM_ADMINS_JSON must be a JSON array")

    output: list[AdminSeed] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        email = str(item.get("email") or "").strip().lower()
        password = str(item.get("password") or "").strip()
        name = str(item.get("name") or "").strip() or None
        if not email or not password:
            continue
        output.append(AdminSeed(email=email, password=password, name=name))
    return output


def _validate_database_url(url: str, allow_test_sqlite: bool) -> str:
    lowered = url.lower()
    if lowered.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    if lowered.startswith("postgresql+psycopg://"):
        return url
    if allow_test_sqlite and lowered.startswith("sqlite://"):
        return url
    raise ValueError("DATABASE_URL must use PostgreSQL in non-test deployments")


def load_config() -> ServerConfig:
    environment = os.getenv("MDM_ENV", "development").strip().lower()
    allow_test_sqlite = _parse_bool(
        os.getenv("MDM_ALLOW_SQLITE"),
        environment in {"test", "ci", "development", "local", "dev"},
    )
    database_url = _validate_database_url(_require_env("DATABASE_URL"), allow_test_sqlite=allow_test_sqlite)

    dev_docs_flag = _parse_bool(os.getenv("MDM_DEV_ENABLE_DOCS"), False)
    dev_enable_docs = bool(dev_docs_flag and environment in {"development", "local", "dev", "test", "ci"})

    enforce_https_default = environment in {"production", "prod", "staging"}
    enforce_https = _parse_bool(os.getenv("MDM_ENFORCE_HTTPS"), enforce_https_default)

    return ServerConfig(
        environment=environment,
        database_url=database_url,
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0").strip(),
        host=os.getenv("MDM_SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("MDM_SERVER_PORT", "3000")),
        dev_enable_docs=dev_enable_docs,
        enforce_https=enforce_https,
        jwt_secret=_require_env("MDM_JWT_SECRET"),
        jwt_issuer=os.getenv("MDM_JWT_ISSUER", "mdm-server"),
        jwt_audience=os.getenv("MDM_JWT_AUDIENCE", "mdm-admins"),
        login_token_ttl_seconds=int(os.getenv("MDM_LOGIN_TOKEN_TTL_SECONDS", str(24 * 60 * 60))),
        register_token_ttl_seconds=int(os.getenv("MDM_REGISTER_TOKEN_TTL_SECONDS", str(12 * 60 * 60))),
        cors_origins=_parse_list(os.getenv("MDM_CORS_ORIGINS"), ["http://localhost:5173", "http://localhost:4173"]),
        max_payload_bytes=int(os.getenv("MDM_MAX_PAYLOAD_BYTES", str(MAX_PAYLOAD_BYTES))),
        ingest_rate_limit_per_minute=max(1, int(os.getenv("MDM_INGEST_RATE_LIMIT_PER_MINUTE", "120"))),
        login_rate_limit_per_minute=max(1, int(os.getenv("MDM_LOGIN_RATE_LIMIT_PER_MINUTE", "20"))),
        recent_activity_hours=max(1, int(os.getenv("MDM_RECENT_ACTIVITY_HOURS", "24"))),
        directory_sync_enabled=_parse_bool(os.getenv("MDM_DIRECTORY_SYNC_ENABLED"), True),
        directory_sync_interval_seconds=max(60, int(os.getenv("MDM_DIRECTORY_SYNC_INTERVAL_SECONDS", str(24 * 60 * 60)))),
        directory_users_file=os.getenv("MDM_DIRECTORY_USERS_FILE", "test_dir/users.json"),
        google_service_account_key_file=_optional_env("GOOGLE_SERVICE_ACCOUNT_KEY_FILE"),
        google_workspace_admin_email=_optional_env("GOOGLE_WORKSPACE_ADMIN_EMAIL"),
        google_workspace_customer=os.getenv("GOOGLE_WORKSPACE_CUSTOMER", "my_customer").strip() or "my_customer",
        metrics_token=_optional_env("MDM_METRICS_TOKEN"),
        admin_seeds=_parse_admin_seeds(),
    )
