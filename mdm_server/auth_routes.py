from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from mdm_server.auth import TOKEN_COOKIE, AuthManager, authenticate_admin, principal_from_request
from mdm_server.db import ServerDatabase
from mdm_server.projection import admin_payload
from mdm_server.schemas import AdminPrincipal, LoginRequest, RegisterRequest

logger = logging.getLogger("mdm_server.auth_routes")

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_token_cookie(response: JSONResponse, request: Request, token: str, max_age: int) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        secure=bool(request.app.state.config.enforce_https),
        samesite="lax",
        max_age=max_age,
    )


def _client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, request: Request) -> JSONResponse:
    db: ServerDatabase = request.app.state.db
    auth: AuthManager = request.app.state.auth
    config = request.app.state.config

    if db.get_admin_by_email(payload.email) is not None:
        raise HTTPException(status_code=400, detail={"message": "Admin already exists"})
    try:
        admin = db.create_admin(payload.email, auth.hash_password(payload.password), payload.name)
    except IntegrityError as exc:
        raise HTTPException(status_code=400, detail={"message": "Admin already exists"}) from exc

    principal = AdminPrincipal(id=admin.id, email=admin.email)
    token = auth.create_token(principal, ttl_seconds=config.register_token_ttl_seconds)
    logger.info("admin registered", extra={"admin_id": admin.id})

    response = JSONResponse(
        status_code=201,
        content={"message": "Admin registered successfully", "admin": admin_payload(admin)},
    )
    _set_token_cookie(response, request, token, config.register_token_ttl_seconds)
    return response


@router.post("/login")
def login(payload: LoginRequest, request: Request) -> JSONResponse:
    db: ServerDatabase = request.app.state.db
    auth: AuthManager = request.app.state.auth
    config = request.app.state.config
    limiter = request.app.state.rate_limiter

    if not limiter.allow(key=f"login:{_client_address(request)}", limit=config.login_rate_limit_per_minute):
        raise HTTPException(status_code=429, detail={"message": "Too many login attempts"})

    admin = authenticate_admin(db=db, auth=auth, email=payload.email, password=payload.password)
    principal = AdminPrincipal(id=admin.id, email=admin.email)
    token = auth.create_token(principal, ttl_seconds=config.login_token_ttl_seconds)

    response = JSONResponse(content={"message": "Login successful", "admin": admin_payload(admin)})
    _set_token_cookie(response, request, token, config.login_token_ttl_seconds)
    return response


@router.get("/logout")
def logout(principal: AdminPrincipal = Depends(principal_from_request)) -> JSONResponse:
    del principal
    response = JSONResponse(content={"message": "Logged out successfully"})
    response.delete_cookie(TOKEN_COOKIE)
    return response


@router.get("/me")
def me(request: Request, principal: AdminPrincipal = Depends(principal_from_request)) -> JSONResponse:
    admin = request.app.state.db.get_admin(principal.id)
    if admin is None:
        raise HTTPException(status_code=404, detail={"message": "Admin not found"})
    return JSONResponse(content={"admin": admin_payload(admin)})


@router.delete("/delete")
def delete_self(request: Request, principal: AdminPrincipal = Depends(principal_from_request)) -> JSONResponse:
    if not request.app.state.db.delete_admin(principal.id):
        raise HTTPException(status_code=404, detail={"message": "Admin not found"})
    logger.info("admin deleted own account", extra={"admin_id": principal.id})
    response = JSONResponse(content={"message": "Admin deleted successfully"})
    response.delete_cookie(TOKEN_COOKIE)
    return response


@router.get("/admins")
def list_admins(request: Request, principal: AdminPrincipal = Depends(principal_from_request)) -> JSONResponse:
    del principal
    admins = request.app.state.db.list_admins()
    return JSONResponse(content={"admins": [admin_payload(admin) for admin in admins]})


@router.delete("/admins/{admin_id}")
def delete_admin(
    admin_id: int,
    request: Request,
    principal: AdminPrincipal = Depends(principal_from_request),
) -> JSONResponse:
    if not request.app.state.db.delete_admin(admin_id):
        raise HTTPException(status_code=404, detail={"message": "Admin not found"})
    logger.info("admin deleted", extra={"admin_id": admin_id, "deleted_by": principal.id})
    return JSONResponse(content={"message": "Admin deleted successfully"})
