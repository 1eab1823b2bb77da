"""Shared rate limiter instance for use across route files."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from tabsettle.core.config import get_settings


def get_user_or_ip(request: Request) -> str:
    """Rate limit by employee if authenticated, else by IP."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        from tabsettle.core.security import decode_access_token
        token = auth.split(" ", 1)[1]
        payload = decode_access_token(token, request.app.state.settings)
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_user_or_ip, enabled=get_settings().rate_limit_enabled)
