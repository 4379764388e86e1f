"""Client IP extraction for rate limiting and security logs.

Cloud Run and Cloud Functions sit behind Google's front end, which appends
the caller to X-Forwarded-For. The header is only honoured when TRUST_PROXY
is set, so a directly exposed instance cannot be spoofed.
"""

from __future__ import annotations

import os

from fastapi import Request

TRUST_PROXY = os.environ.get("TRUST_PROXY", "").lower() in ("1", "true")


def get_client_ip(request: Request) -> str:
    if TRUST_PROXY:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # first hop is the original client
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"
