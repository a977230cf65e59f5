from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mdm_server.config import ServerConfig
from mdm_server.db import ServerDatabase
from mdm_server.models import Admin
from mdm_server.schemas import AdminPrincipal
from mdm_shared.timezone import now_canonical

logger = logging.getLogger("mdm_server.auth")

TOKEN_COOKIE = "mdm_token"
INVALID_CREDENTIALS = "Invalid credentials"


def _unauthorized(message: str, *, expired: bool = False) -> HTTPException:
    detail: dict[str, Any] = {"message": message, "logout": True}
    if expired:
        detail["expired"] = True
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class AuthManager:
    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.hasher = PasswordHasher()

    def hash_password(self, password: str) -> str:
        return self.hasher.hash(password)

    def verify_password(self, password: str, hashed: str) -> bool:
        try:
            return bool(self.hasher.verify(hashed, password))
        except (VerificationError, InvalidHashError):
            return False

    def create_token(self, principal: AdminPrincipal, ttl_seconds: int) -> str:
        now = now_canonical()
        claims = {
            "sub": str(principal.id),
            "email": principal.email,
            "iss": self.config.jwt_issuer,
            "aud": self.config.jwt_audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        }
        return jwt.encode(claims, self.config.jwt_secret, algorithm="HS256")

    def decode_token(self, token: str) -> AdminPrincipal:
        try:
            payload = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=["HS256"],
                issuer=self.config.jwt_issuer,
                audience=self.config.jwt_audience,
                options={"require": ["exp", "sub"], "verify_exp": False},
            )
        except jwt.PyJWTError as exc:
            raise _unauthorized("Invalid token. Please sign in again.") from exc

        try:
            expires_at = int(payload["exp"])
        except (TypeError, ValueError) as exc:
            raise _unauthorized("Invalid token. Please sign in again.") from exc
        if expires_at < int(now_canonical().timestamp()):
            raise _unauthorized("Token expired. Please sign in again.", expired=True)

        try:
            admin_id = int(payload.get("sub"))
        except (TypeError, ValueError) as exc:
            raise _unauthorized("Invalid token. Please sign in again.") from exc

        return AdminPrincipal(id=admin_id, email=str(payload.get("email") or ""))


bearer_scheme = HTTPBearer(auto_error=False)


def principal_from_request(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AdminPrincipal:
    auth: AuthManager = request.app.state.auth
    token: str | None = None
    if credentials and credentials.scheme.lower() == "bearer":
        token = credentials.credentials
    if not token:
        token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise _unauthorized("Access denied. No token provided.")
    principal = auth.decode_token(token)
    request.state.admin = principal
    return principal


def authenticate_admin(db: ServerDatabase, auth: AuthManager, email: str, password: str) -> Admin:
    admin = db.get_admin_by_email(email)
    if admin is None or not auth.verify_password(password=password, hashed=admin.password_hash):
        logger.info("failed admin login", extra={"admin_email": email})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"message": INVALID_CREDENTIALS})
    return admin
