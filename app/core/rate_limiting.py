"""
Rate limiting with slowapi.

Webhooks are limited per integration rather than per client address, since
one upstream service usually sends from many addresses.
"""
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core.config import settings
from app.core.logging_config import log_warning
from app.middleware.request_logging import request_id_ctx


def integration_key(request: Request) -> str:
    """Rate limit key for routes addressed by an integration id."""
    integration_id = request.path_params.get("integration_id")
    if integration_id:
        return f"integration:{integration_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limiting_enabled,
    headers_enabled=False,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    request_id = request_id_ctx.get()
    log_warning(
        "Rate limit exceeded",
        request_id=request_id,
        path=request.url.path,
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={"error": "rate_limited", "message": f"Rate limit exceeded: {exc.detail}", "request_id": request_id},
        headers={"Retry-After": "60"},
    )
