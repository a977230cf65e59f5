from __future__ import annotations

import argparse
import getpass
import json
import sys
from pathlib import Path

import uvicorn
from alembic import command
from alembic.config import Config

from mdm_server.app import create_app
from mdm_server.auth import AuthManager
from mdm_server.config import AdminSeed, ServerConfig, load_config
from mdm_server.db import ServerDatabase
from mdm_server.directory import build_directory_client, sync_directory_users
from mdm_server.logging import configure_logging

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def cmd_run(cfg: ServerConfig, args: argparse.Namespace) -> int:
    uvicorn.run(
        create_app(cfg),
        host=args.host or cfg.host,
        port=args.port or cfg.port,
        log_level="debug" if args.verbose else "info",
        log_config=None,
    )
    return 0


def cmd_migrate(cfg: ServerConfig, args: argparse.Namespace) -> int:
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("sqlalchemy.url", cfg.database_url)
    command.upgrade(alembic_cfg, args.revision)
    return 0


def cmd_create_admin(cfg: ServerConfig, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Admin password: ")
    if not password:
        print("password must not be empty", file=sys.stderr)
        return 2
    db = ServerDatabase(cfg.database_url)
    try:
        db.seed_admins(
            [AdminSeed(email=args.email.strip().lower(), password=password, name=args.name)],
            AuthManager(cfg).hash_password,
        )
    finally:
        db.dispose()
    print(json.dumps({"admin": args.email.strip().lower(), "status": "upserted"}))
    return 0


def cmd_sync_users(cfg: ServerConfig, args: argparse.Namespace) -> int:
    del args
    db = ServerDatabase(cfg.database_url)
    try:
        written = sync_directory_users(db, build_directory_client(cfg))
    finally:
        db.dispose()
    print(json.dumps({"written": written}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdm_server", description="MDM compliance server")
    parser.add_argument("--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="serve the HTTP API")
    run_parser.add_argument("--host", default=None)
    run_parser.add_argument("--port", type=int, default=None)
    run_parser.set_defaults(handler=cmd_run)

    migrate_parser = subparsers.add_parser("migrate", help="apply Alembic migrations")
    migrate_parser.add_argument("--revision", default="head")
    migrate_parser.set_defaults(handler=cmd_migrate)

    admin_parser = subparsers.add_parser("create-admin", help="create a dashboard admin or reset its password")
    admin_parser.add_argument("--email", required=True)
    admin_parser.add_argument("--password", default=None, help="prompted for when omitted")
    admin_parser.add_argument("--name", default=None)
    admin_parser.set_defaults(handler=cmd_create_admin)

    sync_parser = subparsers.add_parser("sync-users", help="mirror the user directory once and exit")
    sync_parser.set_defaults(handler=cmd_sync_users)

    parser.set_defaults(handler=cmd_run, host=None, port=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(verbose=bool(args.verbose))
    return int(args.handler(load_config(), args))


if __name__ == "__main__":
    raise SystemExit(main())
