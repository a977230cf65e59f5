from __future__ import annotations

import math
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from mdm_server.auth import principal_from_request
from mdm_server.db import ServerDatabase
from mdm_server.models import Device
from mdm_server.projection import (
    device_payload,
    summary_payload,
    table_row_payload,
    telemetry_payload,
)
from mdm_server.schemas import AdminPrincipal
from mdm_shared.constants import ONLINE_WINDOW_SECONDS
from mdm_shared.enums import TelemetryCategory
from mdm_shared.timezone import now_canonical

STATS_CACHE_KEY = "devices:dashboard:stats"
STATS_CACHE_TTL_SECONDS = 30

router = APIRouter(prefix="/devices", tags=["devices"])


def _category(data_type: str) -> TelemetryCategory:
    try:
        return TelemetryCategory(data_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"message": f"Invalid data type: {data_type}"}) from exc


def _require_device(db: ServerDatabase, device_id: int) -> Device:
    device = db.get_device(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail={"message": "Device not found"})
    return device


@router.get("")
def list_devices(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    search: str | None = Query(default=None, max_length=255),
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    del principal
    db: ServerDatabase = request.app.state.db
    now = now_canonical()
    rows, total = db.list_devices(page=page, limit=limit, search=search or None)
    return JSONResponse(
        content={
            "devices": [device_payload(row.device, row.summary, now=now) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
        }
    )


@router.get("/table")
def device_table(
    request: Request,
    search: str | None = Query(default=None, max_length=255),
    os_type: str | None = Query(default=None, max_length=50),
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    del principal
    db: ServerDatabase = request.app.state.db
    now = now_canonical()
    rows = db.device_table(search=search or None, os_type=os_type or None)
    return JSONResponse(
        content={
            "devices": [table_row_payload(row, now=now) for row in rows],
            "total": len(rows),
            "filters": {"search": search or None, "os_type": os_type or None},
        }
    )


@router.get("/dashboard/stats")
def dashboard_stats(request: Request, principal: AdminPrincipal = Depends(principal_from_request)) -> JSONResponse:
    del principal
    db: ServerDatabase = request.app.state.db
    recent_hours = request.app.state.config.recent_activity_hours
    stats = request.app.state.cache.get_or_compute(
        STATS_CACHE_KEY,
        STATS_CACHE_TTL_SECONDS,
        lambda: db.dashboard_stats(
            now=now_canonical(),
            recent_hours=recent_hours,
            online_window=timedelta(seconds=ONLINE_WINDOW_SECONDS),
        ),
    )
    return JSONResponse(content=stats)


@router.get("/{device_id}")
def device_detail(
    device_id: int,
    request: Request,
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    del principal
    db: ServerDatabase = request.app.state.db
    device = _require_device(db, device_id)
    summary = db.get_summary(device_id)
    latest = db.latest_telemetry_all(device_id)
    return JSONResponse(
        content={
            "device": device_payload(device, summary),
            "summary": summary_payload(summary),
            "data": {category.value: telemetry_payload(record, category) for category, record in latest.items()},
        }
    )


@router.get("/{device_id}/data/{data_type}")
def device_data(
    device_id: int,
    data_type: str,
    request: Request,
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    del principal
    db: ServerDatabase = request.app.state.db
    category = _category(data_type)
    _require_device(db, device_id)
    record = db.latest_telemetry(device_id, category)
    return JSONResponse(content=telemetry_payload(record, category))


@router.get("/{device_id}/data/{data_type}/history")
def device_data_history(
    device_id: int,
    data_type: str,
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    del principal
    db: ServerDatabase = request.app.state.db
    category = _category(data_type)
    _require_device(db, device_id)
    records, total = db.telemetry_history(device_id, category, page=page, limit=limit)
    return JSONResponse(
        content={
            "items": [telemetry_payload(record, category) for record in records],
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }
    )
