"""
Client context middleware
=========================
Collects the forensic request metadata (client IP, user agent, language,
timezone) once per request and puts it on request.state.client. The audit
trail and access gate read it from there instead of every handler parsing
headers on its own.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


@dataclass
class ClientContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    accept_language: Optional[str] = None
    timezone: Optional[str] = None
    wallet_address: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def build_client_context(request: Request) -> ClientContext:
    headers = request.headers
    return ClientContext(
        ip_address=client_ip(request),
        user_agent=headers.get("User-Agent"),
        accept_language=headers.get("Accept-Language"),
        timezone=headers.get("X-Timezone"),
        wallet_address=headers.get("X-Wallet-Address") or headers.get("X-Server-Address"),
    )


class ClientContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.client = build_client_context(request)
        return await call_next(request)


def get_client_context(request: Request) -> ClientContext:
    """FastAPI dependency; works with or without the middleware installed."""
    ctx = getattr(request.state, "client", None)
    if ctx is None:
        ctx = build_client_context(request)
        request.state.client = ctx
    return ctx
