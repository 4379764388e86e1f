"""Rate limiting middleware using slowapi.

Default limits:
- Global: 100 req/min per IP
- AI generation callables: 20 req/min (each call hits a paid provider)
- Other callables: 30 req/min
- Webhooks / internal events: 300 req/min (platform retries arrive in bursts)
"""

from __future__ import annotations

import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ..utils.client_ip import get_client_ip

logger = logging.getLogger("api.rate_limit")
security_logger = logging.getLogger("security")


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["100/minute"],
    storage_uri="memory://",
)

rate_limit_generation = limiter.limit("20/minute")
rate_limit_callable = limiter.limit("30/minute")
rate_limit_events = limiter.limit("300/minute")
rate_limit_health = limiter.limit("120/minute")


def setup_rate_limiting(app):
    """Configure rate limiting on the FastAPI app.

    Call this in main.py after creating the app.
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _custom_rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiting enabled")


async def _custom_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Log the event and return 429 with Retry-After header."""
    security_logger.warning({
        "event": "rate_limit_exceeded",
        "ip": get_client_ip(request),
        "path": request.url.path,
        "method": request.method,
        "limit": str(exc.detail),
    })

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "status": "RESOURCE_EXHAUSTED",
                "message": "Too many requests",
                "details": {"limit": str(exc.detail)},
            }
        },
        headers={"Retry-After": "60"},
    )
