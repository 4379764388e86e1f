"""Per-user, per-month AI usage accounting.

Entries live at ``users/{uid}/aiUsage/{YYYY-MM}``. A missing entry reads as
zero, so a new calendar month starts from a clean slate without any
rollover job.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from google.cloud import firestore

logger = logging.getLogger("api.usage_ledger")

USAGE_SUBCOLLECTION = "aiUsage"


def month_key(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.strftime("%Y-%m")


def previous_month_key(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    if current.month == 1:
        return f"{current.year - 1}-12"
    return f"{current.year}-{current.month - 1:02d}"


@dataclass
class UsageSnapshot:
    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    @classmethod
    def from_doc(cls, data: Optional[Dict[str, Any]]) -> "UsageSnapshot":
        data = data or {}
        return cls(
            requests=int(data.get("requests") or 0),
            input_tokens=int(data.get("inputTokens") or 0),
            output_tokens=int(data.get("outputTokens") or 0),
            cost=float(data.get("cost") or 0.0),
        )


@dataclass
class ReportSummary:
    month: str
    total_users: int = 0
    active_users: int = 0
    total_requests: int = 0
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    avg_requests: float = 0.0
    avg_cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class UsageLedger:
    def __init__(self, db: firestore.Client) -> None:
        self._db = db

    def _entry_ref(self, user_id: str, month: str) -> firestore.DocumentReference:
        return (
            self._db.collection("users")
            .document(user_id)
            .collection(USAGE_SUBCOLLECTION)
            .document(month)
        )

    def get_usage(self, user_id: str, month: Optional[str] = None) -> UsageSnapshot:
        snap = self._entry_ref(user_id, month or month_key()).get()
        if not snap.exists:
            return UsageSnapshot()
        return UsageSnapshot.from_doc(snap.to_dict())

    def current_cost(self, user_id: str, month: Optional[str] = None) -> float:
        return self.get_usage(user_id, month).cost

    def record(
        self,
        user_id: str,
        *,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        month: Optional[str] = None,
    ) -> None:
        """Atomically add one successful request to the month's entry.

        Uses field increments rather than a transaction; concurrent callers
        commute.
        """
        if cost < 0:
            raise ValueError("cost must be non-negative")
        self._entry_ref(user_id, month or month_key()).set(
            {
                "cost": firestore.Increment(cost),
                "requests": firestore.Increment(1),
                "inputTokens": firestore.Increment(int(input_tokens)),
                "outputTokens": firestore.Increment(int(output_tokens)),
                "lastUpdated": firestore.SERVER_TIMESTAMP,
            },
            merge=True,
        )

    def build_report(self, month: str) -> ReportSummary:
        summary = ReportSummary(month=month)
        for user_doc in self._db.collection("users").stream():
            summary.total_users += 1
            usage_doc = self._entry_ref(user_doc.id, month).get()
            if not usage_doc.exists:
                continue
            usage = UsageSnapshot.from_doc(usage_doc.to_dict())
            summary.active_users += 1
            summary.total_requests += usage.requests
            summary.total_cost += usage.cost
            summary.total_input_tokens += usage.input_tokens
            summary.total_output_tokens += usage.output_tokens

        if summary.active_users > 0:
            summary.avg_requests = round(summary.total_requests / summary.active_users, 2)
            summary.avg_cost = round(summary.total_cost / summary.active_users, 2)

        logger.info(
            "Usage report month=%s users=%d active=%d requests=%d cost=%.4f",
            month,
            summary.total_users,
            summary.active_users,
            summary.total_requests,
            summary.total_cost,
        )
        return summary
