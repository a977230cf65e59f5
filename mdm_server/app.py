from __future__ import annotations

import logging
from typing import Any

import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from mdm_server.auth import AuthManager
from mdm_server.auth_routes import router as auth_router
from mdm_server.cache import RedisCache, RedisRateLimiter
from mdm_server.config import ServerConfig, load_config
from mdm_server.db import ServerDatabase
from mdm_server.devices import router as devices_router
from mdm_server.directory import DirectoryError, build_directory_client
from mdm_server.ingest import router as ingest_router
from mdm_server.scheduler import DirectorySyncScheduler
from mdm_server.security import EnforceHTTPSMiddleware, SecurityHeadersMiddleware
from mdm_server.telemetry import MetricsMiddleware
from mdm_server.telemetry import router as telemetry_router
from mdm_server.users import router as users_router

logger = logging.getLogger("mdm_server.app")


def _validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg", "")), "type": error.get("type")}
        for error in exc.errors()
    ]


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            content = dict(exc.detail)
        else:
            content = {"message": str(exc.detail)}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"message": "Invalid request", "errors": _validation_errors(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("store failure on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal server error", "error": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal server error", "error": str(exc)})


def create_app(config: ServerConfig | None = None) -> FastAPI:
    cfg = config or load_config()

    app = FastAPI(
        title="MDM Compliance Server",
        docs_url="/docs" if cfg.dev_enable_docs else None,
        redoc_url="/redoc" if cfg.dev_enable_docs else None,
        openapi_url="/openapi.json" if cfg.dev_enable_docs else None,
    )

    db = ServerDatabase(cfg.database_url)
    if cfg.database_url.lower().startswith("sqlite://"):
        db.init_for_tests()
    auth = AuthManager(cfg)
    cache = RedisCache(cfg.redis_url)
    limiter = RedisRateLimiter(cfg.redis_url, fail_closed=cfg.environment not in {"test", "ci"})

    scheduler: DirectorySyncScheduler | None = None
    if cfg.directory_sync_enabled:
        try:
            scheduler = DirectorySyncScheduler(db, build_directory_client(cfg), cfg.directory_sync_interval_seconds)
        except DirectoryError:
            logger.exception("directory client unavailable; user sync disabled")

    app.state.config = cfg
    app.state.db = db
    app.state.auth = auth
    app.state.cache = cache
    app.state.rate_limiter = limiter
    app.state.directory_scheduler = scheduler

    app.add_middleware(EnforceHTTPSMiddleware, enabled=cfg.enforce_https)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    install_error_handlers(app)

    app.include_router(ingest_router)
    app.include_router(auth_router)
    app.include_router(devices_router)
    app.include_router(users_router)
    app.include_router(telemetry_router)

    @app.get("/")
    def root() -> JSONResponse:
        return JSONResponse(content={"message": "MDM server is running"})

    @app.get("/health")
    def health() -> JSONResponse:
        try:
            db.ping()
        except SQLAlchemyError as exc:
            return JSONResponse(status_code=500, content={"status": "error", "detail": exc.__class__.__name__})
        try:
            cache.ping()
            redis_status = "ok"
        except redis.RedisError:
            redis_status = "unavailable"
        return JSONResponse(content={"status": "ok", "redis": redis_status})

    @app.on_event("startup")
    async def _startup() -> None:
        try:
            cache.ping()
        except redis.RedisError:
            logger.warning("redis connection failed at startup")
        db.seed_admins(cfg.admin_seeds, auth.hash_password)
        if scheduler is not None:
            scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if scheduler is not None:
            scheduler.stop()
        db.dispose()

    return app
