from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from mdm_core.compliance import device_status, first_error, summarize_categories
from mdm_server.db import ServerDatabase
from mdm_server.telemetry import REPORTS_ACCEPTED, REPORTS_REJECTED, TELEMETRY_WRITE_FAILURES
from mdm_shared.constants import MAX_REPORT_CLOCK_SKEW_SECONDS
from mdm_shared.enums import AccountType, TelemetryCategory
from mdm_shared.schemas import AgentReport, AgentReportResponse
from mdm_shared.timezone import isoformat, now_canonical, parse_report_timestamp

logger = logging.getLogger("mdm_server.ingest")

MISSING_FIELDS_MESSAGE = "Missing required fields: user, serial_no, os_type"

router = APIRouter(prefix="", tags=["ingest"])


def _reject(status_code: int, reason: str, message: str, **extra: Any) -> HTTPException:
    REPORTS_REJECTED.labels(reason=reason).inc()
    detail: dict[str, Any] = {"message": message}
    detail.update(extra)
    return HTTPException(status_code=status_code, detail=detail)


def check_first_sight(db: ServerDatabase, report: AgentReport) -> None:
    """Gate a serial the store has never seen against the user directory."""
    if db.get_device_by_serial(report.serial_no) is not None:
        return

    owned = db.get_device_by_email(report.user)
    if owned is not None and owned.serial_no != report.serial_no:
        raise _reject(409, "email_owns_device", "User already has a registered device", serial_no=owned.serial_no)

    directory_user = db.get_directory_user(report.user)
    if directory_user is None:
        raise _reject(404, "unknown_user", "User not found in directory")
    if directory_user.account_type == AccountType.SERVICE.value:
        raise _reject(401, "service_account", "Service accounts cannot register devices")


def store_categories(
    db: ServerDatabase,
    device_id: int,
    timestamp: datetime,
    reported: dict[TelemetryCategory, list[Any]],
) -> set[TelemetryCategory]:
    """Append one record per category; each write commits on its own."""
    stored: set[TelemetryCategory] = set()
    for category, items in reported.items():
        try:
            db.append_telemetry(device_id, category, timestamp, items, first_error(items))
        except SQLAlchemyError:
            TELEMETRY_WRITE_FAILURES.labels(category=category.value).inc()
            logger.exception("failed to store %s for device_id=%s", category.value, device_id)
            continue
        stored.add(category)
    return stored


def _payload_too_large(request: Request, limit: int) -> bool:
    raw_length = request.headers.get("content-length")
    if raw_length is None:
        return False
    try:
        return int(raw_length) > limit
    except ValueError:
        return False


async def receive_report(request: Request) -> JSONResponse:
    config = request.app.state.config
    db: ServerDatabase = request.app.state.db
    limiter = request.app.state.rate_limiter

    if _payload_too_large(request, config.max_payload_bytes):
        raise _reject(413, "payload_too_large", "Payload too large")
    body = await request.body()
    if len(body) > config.max_payload_bytes:
        raise _reject(413, "payload_too_large", "Payload too large")

    try:
        report = AgentReport.model_validate_json(body or b"{}")
    except ValidationError as exc:
        REPORTS_REJECTED.labels(reason="invalid_payload").inc()
        logger.info("rejected agent report: %s", exc.error_count())
        raise HTTPException(status_code=400, detail={"message": MISSING_FIELDS_MESSAGE}) from exc

    allowed = limiter.allow(
        key=f"ingest:{report.serial_no}",
        limit=config.ingest_rate_limit_per_minute,
        window_seconds=60,
        fail_closed=False,
    )
    if not allowed:
        raise _reject(429, "rate_limit", "Rate limit exceeded")

    check_first_sight(db, report)

    received_at = now_canonical()
    reported_at = parse_report_timestamp(
        report.timestamp,
        fallback=received_at,
        max_future_skew=timedelta(seconds=MAX_REPORT_CLOCK_SKEW_SECONDS),
    )
    device_id = db.upsert_device(
        serial_no=report.serial_no,
        user_email=report.user,
        computer_name=report.computer_name,
        os_type=report.os_type,
        os_version=report.os_version,
        agent_version=report.agent_version,
        last_seen=reported_at,
        status=device_status(reported_at, now=received_at).value,
    )

    for key in report.unknown_categories():
        logger.warning("ignoring unknown category %r from serial=%s", key, report.serial_no)

    reported = report.category_items()
    stored = store_categories(db, device_id, reported_at, reported)
    flags = summarize_categories(reported, stored)
    db.upsert_summary(device_id, last_report=reported_at, flags=flags)

    REPORTS_ACCEPTED.labels(os_type=report.os_type).inc()
    logger.info(
        "processed agent report",
        extra={"device_id": device_id, "serial_no": report.serial_no, "categories": len(stored)},
    )

    response = AgentReportResponse(
        message="Agent data received successfully",
        device_id=device_id,
        timestamp=isoformat(reported_at) or "",
        categories={category.value: flag for category, flag in flags.items()},
    )
    return JSONResponse(content=response.model_dump(mode="json"))


router.add_api_route("/agent/report", receive_report, methods=["POST"], response_model=AgentReportResponse)
router.add_api_route(
    "/devices/agent/report",
    receive_report,
    methods=["POST"],
    response_model=AgentReportResponse,
    include_in_schema=False,
)
