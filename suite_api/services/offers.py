"""App Store promotional offer signatures."""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, Optional

import jwt

from ..config import APPLE_ISSUER_ID, APPLE_KEY_ID, APPLE_PRIVATE_KEY
from ..errors import Internal, InvalidArgument


def _private_key_material(raw: str) -> str:
    return raw.replace("\\n", "\n").strip()


def sign_promotional_offer(
    product_id: Optional[str],
    offer_id: Optional[str],
    *,
    key_id: str = APPLE_KEY_ID,
    issuer_id: str = APPLE_ISSUER_ID,
    private_key: str = APPLE_PRIVATE_KEY,
) -> Dict[str, Any]:
    if not product_id or not offer_id:
        raise InvalidArgument("productIdentifier and offerIdentifier must be provided.")
    if not (key_id and issuer_id and private_key):
        raise Internal("Promotional offer signing is not configured.")

    nonce = secrets.token_hex(16)
    timestamp = int(time.time() * 1000)
    payload = {
        "nonce": nonce,
        "timestamp": timestamp,
        "productIdentifier": product_id,
        "offerIdentifier": offer_id,
        "iss": issuer_id,
    }
    token = jwt.encode(
        payload,
        _private_key_material(private_key),
        algorithm="ES256",
        headers={"kid": key_id},
    )
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return {"signature": token, "nonce": nonce, "timestamp": timestamp, "keyId": key_id}
