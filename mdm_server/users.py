from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from mdm_server.auth import principal_from_request
from mdm_server.db import ServerDatabase
from mdm_server.projection import directory_user_payload
from mdm_server.schemas import AccountTypeUpdate, AdminPrincipal

logger = logging.getLogger("mdm_server.users")

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200, alias="pageSize"),
    search: str | None = Query(default=None, max_length=255),
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    del principal
    db: ServerDatabase = request.app.state.db
    term = (search or "").strip() or None
    offset = (page - 1) * page_size
    items = db.list_directory_users(search=term, limit=page_size, offset=offset)
    total = db.count_directory_users(search=term)
    return JSONResponse(
        content={
            "items": [directory_user_payload(user) for user in items],
            "total": total,
            "page": page,
            "pageSize": page_size,
        }
    )


@router.get("/totalusers")
def total_users(request: Request, principal: AdminPrincipal = Depends(principal_from_request)) -> JSONResponse:
    del principal
    return JSONResponse(content={"total": request.app.state.db.count_directory_users()})


@router.put("/{gid}/account-type")
def update_account_type(
    gid: int,
    payload: AccountTypeUpdate,
    request: Request,
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    if not request.app.state.db.update_account_type(gid, payload.account_type):
        raise HTTPException(status_code=404, detail={"message": "User not found"})
    logger.info(
        "account type updated",
        extra={"gid": gid, "account_type": payload.account_type.value, "admin_id": principal.id},
    )
    return JSONResponse(
        content={"message": "Account type updated", "gid": gid, "account_type": payload.account_type.value}
    )


@router.delete("/{gid}")
def delete_user(gid: int, request: Request, principal: AdminPrincipal = Depends(principal_from_request)) -> JSONResponse:
    if not request.app.state.db.delete_directory_user(gid):
        raise HTTPException(status_code=404, detail={"message": "User not found"})
    logger.info("directory user deleted", extra={"gid": gid, "admin_id": principal.id})
    return JSONResponse(content={"message": "User deleted successfully"})
