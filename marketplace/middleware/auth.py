"""
Marketplace — JWT Authentication Middleware
Validates the Bearer token (or the session cookie) on protected routes; returns 401 on failure.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from jose import JWTError

from marketplace.core.config import get_settings
from marketplace.core.security import account_id_from_claims, decode_token

settings = get_settings()

# Paths that do NOT require authentication, for any method
PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/",
    "/docs",
    "/openapi.json",
}

# (method, path prefix) pairs open to anonymous callers
PUBLIC_ROUTES = (
    ("GET", "/marketplace/items"),
    ("POST", "/marketplace/mp/webhook"),
    ("GET", "/boss-points/shop"),
)


def is_public(method: str, path: str) -> bool:
    if path in PUBLIC_PATHS or path.startswith("/metrics"):
        return True
    return any(method == m and (path == p or path.startswith(p + "/")) for m, p in PUBLIC_ROUTES)


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    Intercepts every request. Validates the JWT issued by the account service.
    Attaches decoded claims to request.state.user and the numeric account id
    to request.state.account_id on success.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        if is_public(request.method, request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
        else:
            token = request.cookies.get(settings.AUTH_COOKIE_NAME)
        if not token:
            return _unauthorized("Authentication required")

        try:
            claims = decode_token(token)
            request.state.user = claims
            request.state.account_id = account_id_from_claims(claims)
        except JWTError:
            return _unauthorized("Invalid or expired token")

        return await call_next(request)
