from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from suite_api import handlers
from suite_api.models import StripeEvent
from suite_api.services import mailer
from suite_api.services.accounts import AccountCleanup
from suite_api.services.entitlements import EntitlementResolver
from suite_api.services.referrals import ReferralLedger
from suite_api.services.usage_ledger import ReportSummary, UsageLedger

from tests.fakes import FakeBucket


class RecordingBilling:
    def __init__(self):
        self.credits = []

    def credit_customer(self, customer_id, *, amount_cents, currency, description):
        self.credits.append(customer_id)


def _event(event_type, obj):
    return StripeEvent.model_validate({"id": "evt_1", "type": event_type, "data": {"object": obj}})


@pytest.fixture
def resolver(db, claims):
    return EntitlementResolver(db, verifier=None, claims_writer=claims)


def test_subscription_deleted_revokes_pro(db, claims, resolver):
    db.put("users/u1", {"stripeCustomerId": "cus_1", "stripeRole": "pro"})
    event = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1", "status": "canceled"})

    outcome = handlers.handle_stripe_event(event, resolver, ReferralLedger(db))

    assert outcome["userFound"] is True
    assert db.data("users/u1")["stripeRole"] == "free"
    assert claims.last == ("u1", {"isPro": False})


def test_subscription_checkout_grants_pro_and_credits_referrer(db, claims, resolver):
    db.put("users/ref", {"stripeCustomerId": "cus_ref"})
    db.put("users/u1", {"stripeCustomerId": "cus_1", "referredBy": "ref"})
    billing = RecordingBilling()
    event = _event(
        "checkout.session.completed",
        {"id": "cs_1", "customer": "cus_1", "mode": "subscription", "subscription": "sub_1"},
    )

    outcome = handlers.handle_stripe_event(event, resolver, ReferralLedger(db, billing))

    assert outcome == {"handled": "checkout.session.completed", "userFound": True, "referralCredited": True}
    assert db.data("users/u1")["stripeRole"] == "pro"
    assert billing.credits == ["cus_ref"]


def test_payment_mode_checkout_is_ignored(db, claims, resolver):
    db.put("users/u1", {"stripeCustomerId": "cus_1"})
    event = _event("checkout.session.completed", {"id": "cs_1", "customer": "cus_1", "mode": "payment"})

    handlers.handle_stripe_event(event, resolver, ReferralLedger(db))

    assert "stripeRole" not in db.data("users/u1")
    assert claims.calls == []


def test_unrelated_event_type(db, resolver):
    outcome = handlers.handle_stripe_event(_event("invoice.paid", {}), resolver, ReferralLedger(db))
    assert outcome == {"handled": None, "type": "invoice.paid"}


def test_user_created_assigns_founder(db):
    db.put("users/u1", {})
    assert handlers.handle_user_created(db, "u1") == {"isFounder": True}
    assert db.data("globals/metadata") == {"userCount": 1}


def test_user_created_failure_is_reported(db):
    # No user document: the transactional update fails
    assert handlers.handle_user_created(db, "ghost") == {"isFounder": None}


def test_stripe_command_failure_is_reported():
    class ExplodingBilling:
        def handle_command(self, user_id, command):
            raise RuntimeError("boom")

    outcome = handlers.handle_stripe_command_created(ExplodingBilling(), "u1", {"command": "cancel_subscription"})
    assert outcome == {"cancelled": False}


def test_monthly_report_defaults_to_previous_month(db, monkeypatch):
    sent = []
    monkeypatch.setattr(mailer, "send_monthly_report", lambda summary: sent.append(summary) or True)
    db.put("users/u1", {})
    db.put("users/u1/aiUsage/2024-02", {"requests": 2, "cost": 0.5})

    now = datetime(2024, 3, 1, 9, 0, tzinfo=ZoneInfo("America/New_York"))
    outcome = handlers.handle_monthly_report(UsageLedger(db), now=now)

    assert outcome["emailSent"] is True
    assert outcome["summary"]["month"] == "2024-02"
    assert outcome["summary"]["active_users"] == 1
    assert [s.month for s in sent] == ["2024-02"]


def test_monthly_report_dry_run_sends_nothing(db, monkeypatch):
    monkeypatch.setattr(mailer, "send_monthly_report", pytest.fail)

    outcome = handlers.handle_monthly_report(UsageLedger(db), month="2024-05", dry_run=True)

    assert outcome["emailSent"] is False
    assert outcome["summary"]["total_users"] == 0


def test_feedback_email_escapes_message():
    formatted = mailer.format_feedback_email({
        "displayName": "Sam",
        "email": "sam@example.com",
        "category": "bug",
        "message": "<script>x</script>\nsecond line",
    })

    assert formatted["subject"] == "New Feedback [bug] from Sam"
    assert "&lt;script&gt;" in formatted["html"]
    assert "<br>second line" in formatted["html"]


def test_report_email_format():
    summary = ReportSummary(month="2024-05", total_users=10, active_users=4, total_requests=1234, total_cost=1.5)
    formatted = mailer.format_monthly_report(summary)
    assert formatted["subject"] == "Student Suite Monthly Report for 2024-05"
    assert "1,234" in formatted["html"]


def test_mailer_without_credentials_does_not_send(monkeypatch):
    monkeypatch.setattr(mailer, "MAILJET_API_KEY", "")
    assert mailer.send_mailjet_email("ops@example.com", "subject", "<p>x</p>") is False


def test_mailjet_sender_parsing():
    assert mailer._parse_mailjet_from('"Suite Bot" <bot@example.com>') == {"email": "bot@example.com", "name": "Suite Bot"}
    assert mailer._parse_mailjet_from("bot@example.com") == {"email": "bot@example.com", "name": "Student Suite"}


def test_checkout_subscription_is_cancelled_on_account_deletion(db, claims, resolver):
    class RecordingCancels:
        def __init__(self):
            self.cancelled = []

        def cancel_subscription(self, subscription_id):
            self.cancelled.append(subscription_id)

    db.put("users/u1", {"stripeCustomerId": "cus_1"})
    event = _event(
        "checkout.session.completed",
        {"id": "cs_1", "customer": "cus_1", "mode": "subscription", "subscription": "sub_1"},
    )
    handlers.handle_stripe_event(event, resolver, ReferralLedger(db))

    billing = RecordingCancels()
    outcome = handlers.handle_user_deleted(AccountCleanup(db, billing, FakeBucket), "u1")

    assert billing.cancelled == ["sub_1"]
    assert outcome["subscriptionCancelled"] is True
    assert db.data("users/u1") is None


def test_subscription_deleted_forgets_subscription_id(db, claims, resolver):
    db.put("users/u1", {"stripeCustomerId": "cus_1", "stripeRole": "pro", "stripeSubscriptionId": "sub_1"})
    event = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1", "status": "canceled"})

    handlers.handle_stripe_event(event, resolver, ReferralLedger(db))

    assert "stripeSubscriptionId" not in db.data("users/u1")


def test_subscription_updated_records_subscription_id(db, claims, resolver):
    db.put("users/u1", {"stripeCustomerId": "cus_1"})
    event = _event("customer.subscription.updated", {"id": "sub_2", "customer": "cus_1", "status": "active"})

    handlers.handle_stripe_event(event, resolver, ReferralLedger(db))

    assert db.data("users/u1")["stripeSubscriptionId"] == "sub_2"


def test_monthly_report_failure_is_reported(monkeypatch):
    class BrokenLedger:
        def build_report(self, month):
            raise RuntimeError("firestore unavailable")

    monkeypatch.setattr(mailer, "send_monthly_report", pytest.fail)

    outcome = handlers.handle_monthly_report(BrokenLedger(), month="2024-05")

    assert outcome == {"summary": None, "emailSent": False, "month": "2024-05"}


def test_mailer_without_admin_address_does_not_send(monkeypatch):
    monkeypatch.setattr(mailer, "MAILJET_API_KEY", "key")
    monkeypatch.setattr(mailer, "MAILJET_SECRET_KEY", "secret")
    monkeypatch.setattr(mailer, "ADMIN_EMAIL", "")
    monkeypatch.setattr(mailer.urllib_request, "urlopen", pytest.fail)

    assert mailer.send_feedback_email({"message": "hi"}) is False
    assert mailer.send_monthly_report(ReportSummary(month="2024-05")) is False
