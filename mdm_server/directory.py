"""User directory mirror.

Two sources produce pages in the Google Admin SDK Directory shape: a local
JSON file for development and the Directory API itself, reached through a
service account with domain-wide delegation.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import httpx
import jwt

from mdm_server.config import ServerConfig
from mdm_server.db import DirectoryRecord, ServerDatabase
from mdm_server.telemetry import DIRECTORY_USERS_WRITTEN
from mdm_shared.enums import AccountType
from mdm_shared.sanitization import sanitize_text

logger = logging.getLogger("mdm_server.directory")

DIRECTORY_SCOPE = "https://www.googleapis.com/auth/admin.directory.user.readonly"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERS_URL = "https://admin.googleapis.com/admin/directory/v1/users"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
PAGE_SIZE = 500


class DirectoryError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    primary_email: str
    full_name: str | None = None
    creation_time: str | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> DirectoryEntry:
        name = raw.get("name") if isinstance(raw.get("name"), dict) else {}
        return cls(
            primary_email=str(raw.get("primaryEmail") or ""),
            full_name=name.get("fullName"),
            creation_time=raw.get("creationTime"),
        )


@dataclass(frozen=True, slots=True)
class DirectoryPage:
    users: list[DirectoryEntry] = field(default_factory=list)
    next_page_token: str | None = None


class DirectoryClient(Protocol):
    def list_users(self, page_token: str | None = None) -> DirectoryPage: ...


class FileDirectoryClient:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def list_users(self, page_token: str | None = None) -> DirectoryPage:
        del page_token
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise DirectoryError(f"cannot read directory file {self.path}: {exc}") from exc
        if not isinstance(raw, list):
            raise DirectoryError(f"directory file {self.path} must hold a JSON array")
        return DirectoryPage(users=[DirectoryEntry.from_api(item) for item in raw if isinstance(item, dict)])


class GoogleDirectoryClient:
    def __init__(
        self,
        service_account: dict[str, Any],
        admin_email: str,
        customer: str = "my_customer",
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        for key in ("client_email", "private_key"):
            if not service_account.get(key):
                raise DirectoryError(f"service account key is missing {key}")
        self.service_account = service_account
        self.admin_email = admin_email
        self.customer = customer
        self.http = http_client or httpx.Client(timeout=timeout_seconds)
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_key_file(cls, key_file: str | Path, admin_email: str, customer: str = "my_customer") -> GoogleDirectoryClient:
        try:
            service_account = json.loads(Path(key_file).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise DirectoryError(f"cannot read service account key {key_file}: {exc}") from exc
        return cls(service_account, admin_email=admin_email, customer=customer)

    def _assertion(self, now: int) -> str:
        claims = {
            "iss": self.service_account["client_email"],
            "sub": self.admin_email,
            "scope": DIRECTORY_SCOPE,
            "aud": self.service_account.get("token_uri") or TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
        }
        headers = {}
        if self.service_account.get("private_key_id"):
            headers["kid"] = self.service_account["private_key_id"]
        return jwt.encode(claims, self.service_account["private_key"], algorithm="RS256", headers=headers)

    def _token(self) -> str:
        now = int(time.time())
        if self._access_token and now < self._token_expires_at - 60:
            return self._access_token
        try:
            response = self.http.post(
                self.service_account.get("token_uri") or TOKEN_URL,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": self._assertion(now)},
            )
        except httpx.HTTPError as exc:
            raise DirectoryError(f"token request failed: {exc}") from exc
        if response.status_code != 200:
            raise DirectoryError(f"token request rejected with status {response.status_code}")
        payload = response.json()
        self._access_token = str(payload["access_token"])
        self._token_expires_at = now + int(payload.get("expires_in", 3600))
        return self._access_token

    def list_users(self, page_token: str | None = None) -> DirectoryPage:
        params: dict[str, Any] = {"customer": self.customer, "maxResults": PAGE_SIZE, "projection": "full"}
        if page_token:
            params["pageToken"] = page_token
        try:
            response = self.http.get(USERS_URL, params=params, headers={"Authorization": f"Bearer {self._token()}"})
        except httpx.HTTPError as exc:
            raise DirectoryError(f"directory list failed: {exc}") from exc
        if response.status_code != 200:
            raise DirectoryError(f"directory list rejected with status {response.status_code}")
        payload = response.json()
        users = [DirectoryEntry.from_api(item) for item in payload.get("users") or [] if isinstance(item, dict)]
        return DirectoryPage(users=users, next_page_token=payload.get("nextPageToken") or None)


def build_directory_client(config: ServerConfig) -> DirectoryClient:
    if config.google_service_account_key_file and config.google_workspace_admin_email:
        logger.info("using Google Directory API for user sync")
        return GoogleDirectoryClient.from_key_file(
            config.google_service_account_key_file,
            admin_email=config.google_workspace_admin_email,
            customer=config.google_workspace_customer,
        )
    logger.info("using directory file %s for user sync", config.directory_users_file)
    return FileDirectoryClient(config.directory_users_file)


def _parse_creation_time(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("unparsable directory creationTime %r", raw)
        return None


def to_record(entry: DirectoryEntry) -> DirectoryRecord | None:
    email = sanitize_text(entry.primary_email, max_len=255).lower()
    if "@" not in email:
        return None
    name = sanitize_text(entry.full_name or "", max_len=255) or email
    return DirectoryRecord(
        email=email,
        name=name,
        created_at=_parse_creation_time(entry.creation_time),
        account_type=AccountType.USER,
    )


def sync_directory_users(db: ServerDatabase, client: DirectoryClient) -> int:
    """Pull every directory page and upsert changed users; returns rows written."""
    written = 0
    page_token: str | None = None
    while True:
        page = client.list_users(page_token)
        records = [record for record in (to_record(entry) for entry in page.users) if record is not None]
        written += db.upsert_directory_users(records)
        page_token = page.next_page_token
        if not page_token:
            break
    DIRECTORY_USERS_WRITTEN.inc(written)
    return written
