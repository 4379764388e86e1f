"""Internal trigger endpoints.

Eventarc (Firestore document-created, Auth user-deleted) and Cloud Scheduler
push here with the shared ``X-Internal-Token``. Handlers log their own
failures; the pusher always gets a 200 acknowledgement once the event has
been accepted, so a failing step is not retried into duplicate side effects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from google.cloud import firestore

from .. import handlers
from ..dependencies import (
    get_account_cleanup,
    get_firestore,
    get_stripe_billing,
    get_usage_ledger,
    verify_internal_token,
)
from ..middleware.rate_limit import rate_limit_events
from ..models import (
    EventAck,
    FeedbackCreatedEvent,
    MonthlyReportEvent,
    UserDocumentCreatedEvent,
    UserEvent,
)
from ..services.accounts import AccountCleanup
from ..services.stripe_billing import StripeBilling
from ..services.usage_ledger import UsageLedger

router = APIRouter(dependencies=[Depends(verify_internal_token)])
logger = logging.getLogger("api.events")


def _ack(event: str, details: Any) -> EventAck:
    return EventAck(ok=True, event=event, details=details or {})


@router.post("/checkout-session-created", response_model=EventAck)
@rate_limit_events
async def checkout_session_created(
    request: Request,
    event: UserDocumentCreatedEvent,
    db: firestore.Client = Depends(get_firestore),
    billing: StripeBilling = Depends(get_stripe_billing),
) -> EventAck:
    details = await asyncio.to_thread(
        handlers.handle_checkout_session_created,
        db, billing, event.userId, event.documentId, event.data,
    )
    return _ack("checkout-session-created", details)


@router.post("/portal-link-created", response_model=EventAck)
@rate_limit_events
async def portal_link_created(
    request: Request,
    event: UserDocumentCreatedEvent,
    db: firestore.Client = Depends(get_firestore),
    billing: StripeBilling = Depends(get_stripe_billing),
) -> EventAck:
    details = await asyncio.to_thread(
        handlers.handle_portal_link_created,
        db, billing, event.userId, event.documentId, event.data,
    )
    return _ack("portal-link-created", details)


@router.post("/stripe-command-created", response_model=EventAck)
@rate_limit_events
async def stripe_command_created(
    request: Request,
    event: UserDocumentCreatedEvent,
    billing: StripeBilling = Depends(get_stripe_billing),
) -> EventAck:
    details = await asyncio.to_thread(
        handlers.handle_stripe_command_created, billing, event.userId, event.data
    )
    return _ack("stripe-command-created", details)


@router.post("/feedback-created", response_model=EventAck)
@rate_limit_events
async def feedback_created(request: Request, event: FeedbackCreatedEvent) -> EventAck:
    details = await asyncio.to_thread(handlers.handle_feedback_created, event.feedbackId, event.data)
    return _ack("feedback-created", details)


@router.post("/user-created", response_model=EventAck)
@rate_limit_events
async def user_created(
    request: Request,
    event: UserEvent,
    db: firestore.Client = Depends(get_firestore),
) -> EventAck:
    details = await asyncio.to_thread(handlers.handle_user_created, db, event.userId)
    return _ack("user-created", details)


@router.post("/user-deleted", response_model=EventAck)
@rate_limit_events
async def user_deleted(
    request: Request,
    event: UserEvent,
    cleanup: AccountCleanup = Depends(get_account_cleanup),
) -> EventAck:
    details = await asyncio.to_thread(handlers.handle_user_deleted, cleanup, event.userId)
    return _ack("user-deleted", details)


@router.post("/monthly-report", response_model=EventAck)
@rate_limit_events
async def monthly_report(
    request: Request,
    event: MonthlyReportEvent,
    ledger: UsageLedger = Depends(get_usage_ledger),
) -> EventAck:
    details = await asyncio.to_thread(
        handlers.handle_monthly_report, ledger, month=event.month, dry_run=event.dryRun
    )
    return _ack("monthly-report", details)
