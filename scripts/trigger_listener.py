"""Firestore trigger listener - runs document-created triggers without Eventarc.

Watches the same documents the /internal/events endpoints receive pushes
for and dispatches them to the shared handlers:

    users/{uid}/checkout_sessions/*   -> Stripe checkout session URL
    users/{uid}/portal_links/*        -> Stripe billing portal URL
    users/{uid}/stripe_commands/*     -> subscription cancellation
    feedback/*                        -> operator email
    users/*                           -> founder flag

Documents that already carry their outcome (url/error, processedAt,
isFounder) are skipped, so a restart replays nothing.

Usage:
    python scripts/trigger_listener.py --serviceAccount /path/to/sa.json
"""

from __future__ import annotations

import argparse
import logging
import os
import socket
import time

from google.cloud import firestore  # type: ignore

from suite_api import handlers
from suite_api.services.stripe_billing import StripeBilling

logger = logging.getLogger("trigger_listener")

# Worker ID for this instance
WORKER_ID = f"triggers-{socket.gethostname()}-{os.getpid()}"


def get_firestore_client(sa_path: str) -> firestore.Client:
    return firestore.Client.from_service_account_json(sa_path)


def _owner_id(doc) -> str:
    # users/{uid}/<subcollection>/{docId}
    return doc.reference.parent.parent.id


# =============================================================================
# Dispatch
# =============================================================================

def dispatch_checkout_session(db, billing, doc, data: dict) -> None:
    if "url" in data or "error" in data:
        return
    outcome = handlers.handle_checkout_session_created(db, billing, _owner_id(doc), doc.id, data)
    logger.info("checkout_sessions/%s -> %s", doc.id, "url" if outcome["url"] else "error")


def dispatch_portal_link(db, billing, doc, data: dict) -> None:
    if "url" in data or "error" in data:
        return
    outcome = handlers.handle_portal_link_created(db, billing, _owner_id(doc), doc.id, data)
    logger.info("portal_links/%s -> %s", doc.id, "url" if outcome["url"] else "error")


def dispatch_stripe_command(db, billing, doc, data: dict) -> None:
    if data.get("processedAt"):
        return
    outcome = handlers.handle_stripe_command_created(billing, _owner_id(doc), data)
    doc.reference.update({
        "processedAt": firestore.SERVER_TIMESTAMP,
        "workerId": WORKER_ID,
    })
    logger.info("stripe_commands/%s -> %s", doc.id, outcome)


def dispatch_feedback(db, billing, doc, data: dict) -> None:
    if data.get("processedAt"):
        return
    outcome = handlers.handle_feedback_created(doc.id, data)
    doc.reference.update({
        "processedAt": firestore.SERVER_TIMESTAMP,
        "workerId": WORKER_ID,
    })
    logger.info("feedback/%s -> %s", doc.id, outcome)


def dispatch_user(db, billing, doc, data: dict) -> None:
    if "isFounder" in data:
        return
    outcome = handlers.handle_user_created(db, doc.id)
    logger.info("users/%s -> %s", doc.id, outcome)


WATCHES = (
    ("checkout_sessions", True, dispatch_checkout_session),
    ("portal_links", True, dispatch_portal_link),
    ("stripe_commands", True, dispatch_stripe_command),
    ("feedback", False, dispatch_feedback),
    ("users", False, dispatch_user),
)


# =============================================================================
# Real-time Listener
# =============================================================================

def watch_triggers(sa_path: str):
    """Attach one on_snapshot watcher per trigger source."""
    logger.info("Trigger listener %s starting", WORKER_ID)

    db = get_firestore_client(sa_path)
    billing = StripeBilling(db)

    def make_callback(name, dispatch):
        def on_snapshot(col_snapshot, changes, read_time):
            for change in changes:
                if change.type.name != "ADDED":
                    continue
                doc = change.document
                try:
                    dispatch(db, billing, doc, doc.to_dict() or {})
                except Exception:
                    logger.exception("%s/%s dispatch failed", name, doc.id)
        return on_snapshot

    watchers = []
    for name, is_group, dispatch in WATCHES:
        query = db.collection_group(name) if is_group else db.collection(name)
        watchers.append(query.on_snapshot(make_callback(name, dispatch)))
        logger.info("Watching %s", name)

    try:
        while True:
            time.sleep(60)  # Keep process alive
    except KeyboardInterrupt:
        logger.info("Stopping listener")
        for watcher in watchers:
            watcher.unsubscribe()


# =============================================================================
# CLI Entry Point
# =============================================================================

if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Trigger listener - runs Firestore document-created triggers",
    )
    parser.add_argument('--serviceAccount', required=True, help='Path to Firebase service account JSON')

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(name)s] %(levelname)s: %(message)s')
    watch_triggers(args.serviceAccount)
