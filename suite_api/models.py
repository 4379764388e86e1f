"""Pydantic models for the Student Suite API.

Request models mirror the payloads the mobile app sends through its callable
client; the Stripe and trigger models describe the external payloads we
accept, validated here at the boundary.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from .errors import InvalidArgument

ModelT = TypeVar("ModelT", bound=BaseModel)


# =============================================================================
# CALLABLE ENVELOPE
# =============================================================================

class CallableRequest(BaseModel):
    """Callable protocol envelope: ``{"data": {...}}``."""
    data: Dict[str, Any] = Field(default_factory=dict)


class CallableResponse(BaseModel):
    result: Dict[str, Any]


class CallableErrorBody(BaseModel):
    status: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: CallableErrorBody


def parse_data(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """Validate callable data, mapping failures to INVALID_ARGUMENT."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise InvalidArgument(f"Invalid arguments: {', '.join(fields)}") from exc


# =============================================================================
# CALLABLE DATA
# =============================================================================

class ReceiptData(BaseModel):
    platform: Optional[str] = None
    receiptData: Any = None
    isSandbox: bool = False


class ReferralCodeData(BaseModel):
    code: Any = None


class ReferralRedeemData(BaseModel):
    referrerId: Any = None


class PromotionalOfferData(BaseModel):
    productIdentifier: Optional[str] = None
    offerIdentifier: Optional[str] = None


# =============================================================================
# STRIPE WEBHOOK PAYLOADS
# =============================================================================

class StripeEventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class StripeEvent(BaseModel):
    id: str = ""
    type: str
    data: StripeEventData = Field(default_factory=StripeEventData)


class StripeSubscriptionObject(BaseModel):
    id: str = ""
    customer: Optional[str] = None
    status: Optional[str] = None


class StripeCheckoutSessionObject(BaseModel):
    id: str = ""
    customer: Optional[str] = None
    mode: Optional[str] = None
    subscription: Optional[str] = None


# =============================================================================
# TRIGGER EVENTS (pushed to /internal/events/*)
# =============================================================================

class UserDocumentCreatedEvent(BaseModel):
    """A document created under ``users/{userId}/<subcollection>/{documentId}``."""
    userId: str = Field(..., min_length=1, max_length=128)
    documentId: str = Field(..., min_length=1, max_length=256)
    data: Dict[str, Any] = Field(default_factory=dict)


class FeedbackCreatedEvent(BaseModel):
    feedbackId: str = Field(..., min_length=1, max_length=256)
    data: Dict[str, Any] = Field(default_factory=dict)


class UserEvent(BaseModel):
    userId: str = Field(..., min_length=1, max_length=128)


class MonthlyReportEvent(BaseModel):
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    dryRun: bool = False


class EventAck(BaseModel):
    ok: bool
    event: str
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthStatus(BaseModel):
    status: str
    timestamp: str
    version: str
    providers: List[str] = Field(default_factory=list)
