"""In-app purchase receipt verification (Apple verifyReceipt, Google Play).

Responses are parsed into pydantic models at the boundary so callers work
with typed fields instead of optional dict lookups.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib import error as url_error
from urllib import parse as url_parse
from urllib import request as url_request

from pydantic import BaseModel, Field, ValidationError

from ..config import IAPConfig

logger = logging.getLogger("api.iap")

APPLE_VERIFICATION_URL = "https://buy.itunes.apple.com/verifyReceipt"
APPLE_SANDBOX_VERIFICATION_URL = "https://sandbox.itunes.apple.com/verifyReceipt"
GOOGLE_VERIFICATION_URL = "https://androidpublisher.googleapis.com/androidpublisher/v3/applications"
USER_AGENT = "student-suite-api/1.0"


class AppleReceiptRecord(BaseModel):
    expires_date_ms: int = 0
    original_transaction_id: str = ""
    product_id: str = ""

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.expires_date_ms / 1000, tz=timezone.utc)


class AppleReceiptResponse(BaseModel):
    status: int
    latest_receipt_info: List[AppleReceiptRecord] = Field(default_factory=list)


class GoogleSubscriptionPurchase(BaseModel):
    expiryTimeMillis: Optional[int] = None
    autoRenewing: Optional[bool] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.expiryTimeMillis is None:
            return None
        return datetime.fromtimestamp(self.expiryTimeMillis / 1000, tz=timezone.utc)


class IAPVerificationError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error: str,
        code: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.code = code
        self.details = details or {}


def latest_apple_receipt(records: List[AppleReceiptRecord]) -> Optional[AppleReceiptRecord]:
    """Record with the greatest expiry; the first one wins a tie."""
    if not records:
        return None
    return max(records, key=lambda record: record.expires_date_ms)


def _request_json(
    *,
    url: str,
    timeout: float,
    payload: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    req_headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
    req_headers.update(headers or {})
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
        req_headers["Content-Type"] = "application/json"
    req = url_request.Request(
        url=url,
        data=data,
        headers=req_headers,
        method="POST" if data is not None else "GET",
    )
    try:
        with url_request.urlopen(req, timeout=timeout) as resp:
            body = resp.read().decode("utf-8")
    except url_error.HTTPError as http_exc:
        raise IAPVerificationError(
            status_code=502,
            error="Receipt verification request failed",
            code="IAP_HTTP_ERROR",
            details={"httpStatus": http_exc.code},
        ) from http_exc
    except url_error.URLError as url_exc:
        raise IAPVerificationError(
            status_code=502,
            error="Unable to reach receipt verification endpoint",
            code="IAP_UNREACHABLE",
            details={"reason": str(url_exc)},
        ) from url_exc

    try:
        parsed = json.loads(body) if body else {}
    except ValueError as exc:
        raise IAPVerificationError(
            status_code=502,
            error="Invalid response from receipt verification endpoint",
            code="IAP_INVALID_RESPONSE",
        ) from exc
    if not isinstance(parsed, dict):
        raise IAPVerificationError(
            status_code=502,
            error="Invalid response from receipt verification endpoint",
            code="IAP_INVALID_RESPONSE",
        )
    return parsed


def _build_google_access_token() -> str:
    import google.auth
    from google.auth.transport.requests import Request as GoogleAuthRequest

    try:
        credentials, _ = google.auth.default(scopes=["https://www.googleapis.com/auth/androidpublisher"])
        credentials.refresh(GoogleAuthRequest())
    except Exception as exc:
        raise IAPVerificationError(
            status_code=501,
            error="Google verification credentials are unavailable",
            code="GOOGLE_VERIFICATION_CREDENTIALS_MISSING",
            details={"reason": str(exc)},
        ) from exc

    token = str(getattr(credentials, "token", "") or "").strip()
    if not token:
        raise IAPVerificationError(
            status_code=502,
            error="Failed to obtain Google access token",
            code="GOOGLE_ACCESS_TOKEN_EMPTY",
        )
    return token


class IAPVerifier:
    def __init__(self, config: IAPConfig) -> None:
        self.config = config

    def verify_apple(self, receipt_data: str, *, sandbox: bool) -> AppleReceiptResponse:
        url = APPLE_SANDBOX_VERIFICATION_URL if sandbox else APPLE_VERIFICATION_URL
        raw = _request_json(
            url=url,
            timeout=self.config.apple_timeout_sec,
            payload={"receipt-data": receipt_data, "password": self.config.apple_shared_secret},
        )
        try:
            return AppleReceiptResponse.model_validate(raw)
        except ValidationError as exc:
            raise IAPVerificationError(
                status_code=502,
                error="Unexpected verifyReceipt payload",
                code="APPLE_INVALID_RESPONSE",
                details={"errors": exc.errors(include_url=False)},
            ) from exc

    def verify_google(self, subscription_id: str, purchase_token: str) -> GoogleSubscriptionPurchase:
        if not self.config.google_package_name:
            raise IAPVerificationError(
                status_code=501,
                error="Google Play package name is not configured",
                code="GOOGLE_PACKAGE_NAME_MISSING",
            )
        url = (
            f"{GOOGLE_VERIFICATION_URL}/{url_parse.quote(self.config.google_package_name, safe='')}"
            f"/purchases/subscriptions/{url_parse.quote(subscription_id, safe='')}"
            f"/tokens/{url_parse.quote(purchase_token, safe='')}"
        )
        raw = _request_json(
            url=url,
            timeout=self.config.google_timeout_sec,
            headers={"Authorization": f"Bearer {_build_google_access_token()}"},
        )
        try:
            return GoogleSubscriptionPurchase.model_validate(raw)
        except ValidationError as exc:
            raise IAPVerificationError(
                status_code=502,
                error="Unexpected Google Play payload",
                code="GOOGLE_INVALID_RESPONSE",
                details={"errors": exc.errors(include_url=False)},
            ) from exc
