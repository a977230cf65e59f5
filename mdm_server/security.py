from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

# Agents report over plain HTTP inside the fleet network.
AGENT_REPORT_PATHS = frozenset({"/agent/report", "/devices/agent/report"})

API_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-site",
    "Cache-Control": "no-store",
}
HSTS_VALUE = "max-age=63072000; includeSubDomains"


def request_is_https(request: Request) -> bool:
    forwarded = request.headers.get("x-forwarded-proto", "").split(",", 1)[0].strip().lower()
    return request.url.scheme == "https" or forwarded == "https"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        response = await call_next(request)
        for name, value in API_SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if request_is_https(request):
            response.headers["Strict-Transport-Security"] = HSTS_VALUE
        return response


class EnforceHTTPSMiddleware(BaseHTTPMiddleware):
    """Redirect dashboard traffic to HTTPS; agent report paths pass through."""

    def __init__(self, app, enabled: bool = True) -> None:  # type: ignore[no-untyped-def]
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if not self.enabled or request.url.path in AGENT_REPORT_PATHS or request_is_https(request):
            return await call_next(request)
        if request.method not in {"GET", "HEAD"}:
            return JSONResponse(status_code=400, content={"message": "HTTPS required"})
        return RedirectResponse(url=str(request.url.replace(scheme="https")), status_code=307)
