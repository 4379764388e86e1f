"""Founder badge for the first N accounts."""

from __future__ import annotations

import logging

from google.cloud import firestore

from ..config import FOUNDER_LIMIT

logger = logging.getLogger("api.founders")


def assign_founder_flag(db: firestore.Client, user_id: str, *, limit: int = FOUNDER_LIMIT) -> bool:
    """Stamp ``isFounder`` on a new user and bump ``globals/metadata.userCount``.

    Both writes share one transaction so the count, and therefore the cutoff,
    stays exact under concurrent signups.
    """
    metadata_ref = db.collection("globals").document("metadata")
    user_ref = db.collection("users").document(user_id)

    @firestore.transactional
    def claim_slot(transaction):
        metadata_doc = metadata_ref.get(transaction=transaction)
        user_count = 0
        if metadata_doc.exists:
            user_count = int((metadata_doc.to_dict() or {}).get("userCount") or 0)

        founder = user_count < limit
        transaction.update(user_ref, {"isFounder": founder})
        transaction.set(metadata_ref, {"userCount": user_count + 1}, merge=True)
        return founder

    founder = claim_slot(db.transaction())
    logger.info("User %s processed. Founder status: %s", user_id, founder)
    return founder
