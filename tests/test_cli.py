from __future__ import annotations

import json
from pathlib import Path

import pytest

import mdm_server.__main__ as cli
from mdm_server.db import ServerDatabase


@pytest.fixture()
def cli_env(monkeypatch, tmp_path: Path) -> ServerDatabase:
    url = f"sqlite:///{str(tmp_path / 'cli.db')}"
    users = tmp_path / "users.json"
    users.write_text(json.dumps([{"primaryEmail": "jane.doe@example.com", "name": {"fullName": "Jane Doe"}}]))
    for name in ("GOOGLE_SERVICE_ACCOUNT_KEY_FILE", "GOOGLE_WORKSPACE_ADMIN_EMAIL", "MDM_ADMINS_JSON"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MDM_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("MDM_JWT_SECRET", "cli-secret")
    monkeypatch.setenv("MDM_DIRECTORY_USERS_FILE", str(users))
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    db = ServerDatabase(url)
    db.init_for_tests()
    return db


def test_sync_users_command(cli_env, capsys) -> None:
    assert cli.main(["sync-users"]) == 0
    assert json.loads(capsys.readouterr().out) == {"written": 1}
    assert cli_env.get_directory_user("jane.doe@example.com").name == "Jane Doe"


def test_create_admin_command(cli_env, capsys) -> None:
    assert cli.main(["create-admin", "--email", "Ops@Example.com", "--password", "pw-123456", "--name", "Ops"]) == 0
    assert json.loads(capsys.readouterr().out)["admin"] == "ops@example.com"
    admin = cli_env.get_admin_by_email("ops@example.com")
    assert admin.name == "Ops"
    assert admin.password_hash.startswith("$argon2")


def test_parser_defaults_to_run() -> None:
    args = cli.build_parser().parse_args([])
    assert args.handler is cli.cmd_run
    assert args.host is None
    assert cli.build_parser().parse_args(["run", "--port", "8080"]).port == 8080
