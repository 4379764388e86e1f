"""Service configuration.

Environment is read once at import time. Engines receive explicit config
objects (``GenerationConfig``, ``IAPConfig``) so tests can build them
directly instead of patching the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


def _bool_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _str_env(name: str, default: str = "") -> str:
    return str(os.environ.get(name, default) or "").strip()


def _list_env(name: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in _str_env(name).split(",") if part.strip())


# =============================================================================
# SERVICE
# =============================================================================

DEBUG_MODE = _bool_env("DEBUG", False)
API_VERSION = "1.0.0"
INTERNAL_EVENT_TOKEN = _str_env("INTERNAL_EVENT_TOKEN")
ALLOWED_ORIGINS = _list_env("ALLOWED_ORIGINS") or (
    "http://localhost:5173",
    "http://localhost:3000",
)

# =============================================================================
# FIREBASE
# =============================================================================

FIREBASE_STORAGE_BUCKET = _str_env("FIREBASE_STORAGE_BUCKET")
PROFILE_PICS_PREFIX = "profile_pics"
FOUNDER_LIMIT = int(os.environ.get("FOUNDER_LIMIT", 1000))

# =============================================================================
# STRIPE
# =============================================================================

STRIPE_SECRET_KEY = _str_env("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = _str_env("STRIPE_WEBHOOK_SECRET")
REFERRAL_CREDIT_CENTS = int(os.environ.get("REFERRAL_CREDIT_CENTS", 599))
REFERRAL_CREDIT_CURRENCY = _str_env("REFERRAL_CREDIT_CURRENCY", "usd")

# =============================================================================
# APPLE (promotional offers)
# =============================================================================

APPLE_KEY_ID = _str_env("APPLE_KEY_ID")
APPLE_ISSUER_ID = _str_env("APPLE_ISSUER_ID")
APPLE_PRIVATE_KEY = _str_env("APPLE_PRIVATE_KEY")

# =============================================================================
# MAIL / REPORTS
# =============================================================================

MAILJET_API_KEY = _str_env("MAILJET_API_KEY")
MAILJET_SECRET_KEY = _str_env("MAILJET_SECRET_KEY")
MAILJET_FROM = _str_env("MAILJET_FROM", "Student Suite <no-reply@studentsuite.app>")
ADMIN_EMAIL = _str_env("ADMIN_EMAIL")
REPORT_TIMEZONE = _str_env("REPORT_TIMEZONE", "America/New_York")
MONTHLY_REPORT_CRON = "0 9 1 * *"


# =============================================================================
# ENGINE CONFIG
# =============================================================================

GOOGLE_MODEL_NAME = "gemini-1.5-flash-latest"
OPENAI_MODEL_NAME = "gpt-4o-mini"


@dataclass(frozen=True)
class ModelPricing:
    """USD per token."""

    input_rate: float
    output_rate: float


DEFAULT_PRICING: Dict[str, ModelPricing] = {
    GOOGLE_MODEL_NAME: ModelPricing(input_rate=0.35 / 1_000_000, output_rate=0.70 / 1_000_000),
    OPENAI_MODEL_NAME: ModelPricing(input_rate=0.15 / 1_000_000, output_rate=0.60 / 1_000_000),
}


def _pricing_env(name: str) -> Optional[ModelPricing]:
    """Parse ``"<input>,<output>"`` in USD per million tokens."""
    raw = _str_env(name)
    if not raw:
        return None
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 2:
        raise ValueError(f"{name} must be '<input>,<output>' USD per million tokens")
    return ModelPricing(
        input_rate=float(parts[0]) / 1_000_000,
        output_rate=float(parts[1]) / 1_000_000,
    )


@dataclass(frozen=True)
class GenerationConfig:
    """Credentials, pricing and spend cap for the provider failover engine.

    ``google_api_keys`` is the failover order; blank keys are dropped when
    candidates are built. Every model with a configured credential must
    have a pricing entry, otherwise its calls could not count toward the cap.
    """

    google_api_keys: Tuple[str, ...] = ()
    openai_api_key: Optional[str] = None
    google_model: str = GOOGLE_MODEL_NAME
    openai_model: str = OPENAI_MODEL_NAME
    pricing: Dict[str, ModelPricing] = field(default_factory=lambda: dict(DEFAULT_PRICING))
    monthly_cap_cents: int = 300

    def __post_init__(self) -> None:
        configured = []
        if any(self.google_api_keys):
            configured.append(self.google_model)
        if self.openai_api_key:
            configured.append(self.openai_model)
        missing = [model for model in configured if model not in self.pricing]
        if missing:
            raise ValueError(f"No pricing configured for model(s): {', '.join(missing)}")

    @property
    def monthly_cap(self) -> float:
        return self.monthly_cap_cents / 100.0

    @classmethod
    def from_env(cls) -> "GenerationConfig":
        google_model = _str_env("GOOGLE_MODEL_NAME", GOOGLE_MODEL_NAME)
        openai_model = _str_env("OPENAI_MODEL_NAME", OPENAI_MODEL_NAME)
        pricing = dict(DEFAULT_PRICING)
        for model, env_name in ((google_model, "GOOGLE_MODEL_PRICING"), (openai_model, "OPENAI_MODEL_PRICING")):
            override = _pricing_env(env_name)
            if override is not None:
                pricing[model] = override
        return cls(
            google_api_keys=_list_env("GOOGLE_API_KEYS"),
            openai_api_key=_str_env("OPENAI_API_KEY") or None,
            google_model=google_model,
            openai_model=openai_model,
            pricing=pricing,
            monthly_cap_cents=int(os.environ.get("AI_MONTHLY_CAP_CENTS", 300)),
        )


@dataclass(frozen=True)
class IAPConfig:
    apple_shared_secret: str = ""
    google_package_name: str = ""
    apple_timeout_sec: float = 8.0
    google_timeout_sec: float = 8.0

    @classmethod
    def from_env(cls) -> "IAPConfig":
        return cls(
            apple_shared_secret=_str_env("APPLE_SHARED_SECRET"),
            google_package_name=_str_env("GOOGLE_PLAY_PACKAGE_NAME"),
            apple_timeout_sec=float(os.environ.get("APPLE_API_TIMEOUT_SEC", "8")),
            google_timeout_sec=float(os.environ.get("GOOGLE_API_TIMEOUT_SEC", "8")),
        )
