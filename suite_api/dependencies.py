"""FastAPI dependencies for authentication, Firebase clients and services.

All endpoints use these dependencies for:
- Firebase token verification (callables)
- Shared-token verification (internal trigger pushes)
- Firestore / Storage client access
- Service construction with injected configuration
"""

from __future__ import annotations

import hmac
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import firebase_admin
from firebase_admin import auth, credentials, firestore, storage

from .config import FIREBASE_STORAGE_BUCKET, INTERNAL_EVENT_TOKEN, GenerationConfig, IAPConfig
from .errors import Unauthenticated
from .services.accounts import AccountCleanup
from .services.entitlements import EntitlementResolver
from .services.generation import ProviderFailoverEngine
from .services.iap import IAPVerifier
from .services.referrals import ReferralLedger
from .services.stripe_billing import StripeBilling
from .services.usage_ledger import UsageLedger

# =============================================================================
# CONFIGURATION
# =============================================================================

SERVICE_ACCOUNT_PATH = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS", "")

# Security settings
MAX_TOKEN_AGE_SECONDS = int(os.environ.get("MAX_TOKEN_AGE_SECONDS", 3600))
CLOCK_SKEW_SECONDS = int(os.environ.get("CLOCK_SKEW_SECONDS", 300))
SKIP_TOKEN_AGE_CHECK = os.environ.get("SKIP_TOKEN_AGE_CHECK", "").lower() in ("1", "true")

logger = logging.getLogger("api.dependencies")
security_logger = logging.getLogger("security")

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# FIREBASE INITIALIZATION
# =============================================================================

_firebase_app: Optional[firebase_admin.App] = None
_firestore_client = None
_generation_config: Optional[GenerationConfig] = None
_iap_config: Optional[IAPConfig] = None


def get_firebase_app() -> firebase_admin.App:
    """Get or initialize Firebase Admin app."""
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    options = {"storageBucket": FIREBASE_STORAGE_BUCKET} if FIREBASE_STORAGE_BUCKET else None
    if SERVICE_ACCOUNT_PATH and Path(SERVICE_ACCOUNT_PATH).exists():
        cred = credentials.Certificate(SERVICE_ACCOUNT_PATH)
    else:
        # Cloud Run / Functions: ambient service account
        cred = credentials.ApplicationDefault()
    _firebase_app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase Admin initialized")
    return _firebase_app


def get_firestore() -> firestore.Client:
    """Get Firestore client (singleton)."""
    global _firestore_client

    if _firestore_client is None:
        get_firebase_app()
        _firestore_client = firestore.client()
        logger.info("Firestore client initialized")

    return _firestore_client


def get_storage_bucket() -> Any:
    get_firebase_app()
    return storage.bucket()


# =============================================================================
# AUTHENTICATION
# =============================================================================

async def verify_firebase_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Dict[str, Any]:
    """Verify Firebase ID token from Authorization header.

    Security checks:
    - Valid signature
    - Not expired
    - Not revoked
    - Token age < MAX_TOKEN_AGE_SECONDS
    - Not from the future (clock skew)

    Returns:
        Decoded token claims including 'uid'

    Raises:
        Unauthenticated on any auth failure
    """
    if credentials is None:
        _log_auth_failure(request, "missing_auth_header")
        raise Unauthenticated("The function must be called while authenticated.")

    token = credentials.credentials

    try:
        get_firebase_app()
        decoded = auth.verify_id_token(token, check_revoked=True)
    except auth.RevokedIdTokenError:
        _log_auth_failure(request, "revoked_token")
        raise Unauthenticated("Token has been revoked")
    except auth.ExpiredIdTokenError:
        _log_auth_failure(request, "expired_token")
        raise Unauthenticated("Token has expired")
    except auth.InvalidIdTokenError as e:
        _log_auth_failure(request, "invalid_token", error=str(e))
        raise Unauthenticated("Invalid token")
    except Exception as e:
        _log_auth_failure(request, "auth_error", error=str(e))
        raise Unauthenticated("Authentication failed")

    if not SKIP_TOKEN_AGE_CHECK:
        now = datetime.utcnow().timestamp()
        issued_at = decoded.get('iat', 0)

        if now - issued_at > MAX_TOKEN_AGE_SECONDS:
            _log_auth_failure(request, "token_too_old", uid=decoded.get('uid'))
            raise Unauthenticated("Token too old, please re-authenticate")

        if issued_at > now + CLOCK_SKEW_SECONDS:
            _log_auth_failure(request, "future_token", uid=decoded.get('uid'))
            raise Unauthenticated("Invalid token timestamp")

    return decoded


async def verify_internal_token(
    request: Request,
    x_internal_token: Optional[str] = Header(default=None),
) -> None:
    """Shared-secret check for trigger pushes (Eventarc, Cloud Scheduler)."""
    if not INTERNAL_EVENT_TOKEN:
        _log_auth_failure(request, "internal_token_not_configured")
        raise HTTPException(503, "Internal events are not configured")
    if not x_internal_token or not hmac.compare_digest(x_internal_token, INTERNAL_EVENT_TOKEN):
        _log_auth_failure(request, "bad_internal_token")
        raise HTTPException(401, "Invalid internal token")


def _log_auth_failure(request: Request, reason: str, **extra):
    """Log authentication failure for security monitoring."""
    security_logger.warning({
        "event": "auth_failure",
        "reason": reason,
        "ip": request.client.host if request.client else "unknown",
        "user_agent": request.headers.get("user-agent", "unknown"),
        "path": request.url.path,
        **extra
    })


# =============================================================================
# SERVICES
# =============================================================================

def get_generation_config() -> GenerationConfig:
    global _generation_config
    if _generation_config is None:
        _generation_config = GenerationConfig.from_env()
    return _generation_config


def get_iap_config() -> IAPConfig:
    global _iap_config
    if _iap_config is None:
        _iap_config = IAPConfig.from_env()
    return _iap_config


def get_usage_ledger(db: firestore.Client = Depends(get_firestore)) -> UsageLedger:
    return UsageLedger(db)


def get_generation_engine(
    ledger: UsageLedger = Depends(get_usage_ledger),
    config: GenerationConfig = Depends(get_generation_config),
) -> ProviderFailoverEngine:
    return ProviderFailoverEngine(config, ledger)


def get_stripe_billing(db: firestore.Client = Depends(get_firestore)) -> StripeBilling:
    return StripeBilling(db)


def get_entitlement_resolver(
    db: firestore.Client = Depends(get_firestore),
    config: IAPConfig = Depends(get_iap_config),
) -> EntitlementResolver:
    return EntitlementResolver(db, IAPVerifier(config))


def get_referral_ledger(
    db: firestore.Client = Depends(get_firestore),
    billing: StripeBilling = Depends(get_stripe_billing),
) -> ReferralLedger:
    return ReferralLedger(db, billing)


def get_account_cleanup(
    db: firestore.Client = Depends(get_firestore),
    billing: StripeBilling = Depends(get_stripe_billing),
) -> AccountCleanup:
    # resolved by the image-deletion step itself
    return AccountCleanup(db, billing, get_storage_bucket)
