from datetime import datetime, timedelta, timezone

import pytest

from suite_api.errors import Internal, InvalidArgument
from suite_api.services.entitlements import EntitlementResolver, is_pro
from suite_api.services.iap import (
    AppleReceiptRecord,
    AppleReceiptResponse,
    GoogleSubscriptionPurchase,
    IAPVerificationError,
    latest_apple_receipt,
)

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _ms(moment):
    return int(moment.timestamp() * 1000)


class StubVerifier:
    def __init__(self, apple=None, google=None, error=None):
        self.apple = apple
        self.google = google
        self.error = error
        self.calls = []

    def verify_apple(self, receipt_data, *, sandbox):
        self.calls.append(("apple", receipt_data, sandbox))
        if self.error:
            raise self.error
        return self.apple

    def verify_google(self, subscription_id, purchase_token):
        self.calls.append(("google", subscription_id, purchase_token))
        if self.error:
            raise self.error
        return self.google


@pytest.mark.parametrize(
    "stripe_role, iap_role, expected",
    [
        ("pro", "pro", True),
        ("pro", "free", True),
        ("free", "pro", True),
        ("free", "free", False),
        (None, None, False),
    ],
)
def test_claim_is_or_of_roles(stripe_role, iap_role, expected):
    assert is_pro(stripe_role, iap_role) is expected


# -----------------------------------------------------------------------------
# Stripe
# -----------------------------------------------------------------------------

def test_active_subscription_sets_pro(db, claims):
    db.put("users/u1", {"stripeCustomerId": "cus_1", "iapRole": "free"})
    resolver = EntitlementResolver(db, StubVerifier(), claims_writer=claims)

    user_doc = resolver.reconcile_billing_role("cus_1", "active")

    assert user_doc.id == "u1"
    assert db.data("users/u1")["stripeRole"] == "pro"
    assert claims.calls == [("u1", {"isPro": True})]


def test_cancelled_stripe_keeps_iap_pro(db, claims):
    db.put("users/u1", {"stripeCustomerId": "cus_1", "stripeRole": "pro", "iapRole": "pro"})
    resolver = EntitlementResolver(db, StubVerifier(), claims_writer=claims)

    resolver.reconcile_billing_role("cus_1", "canceled")

    assert db.data("users/u1")["stripeRole"] == "free"
    assert claims.last == ("u1", {"isPro": True})


@pytest.mark.parametrize("status", ["past_due", "canceled", "incomplete", None])
def test_non_active_status_is_free(db, claims, status):
    db.put("users/u1", {"stripeCustomerId": "cus_1", "stripeRole": "pro"})
    EntitlementResolver(db, StubVerifier(), claims_writer=claims).reconcile_billing_role("cus_1", status)

    assert db.data("users/u1")["stripeRole"] == "free"
    assert claims.last == ("u1", {"isPro": False})


def test_claim_reflects_iap_role_written_after_lookup(db, claims):
    db.put("users/u1", {"stripeCustomerId": "cus_1", "stripeRole": "pro", "iapRole": "free"})

    def receipt_lands():
        db.docs["users/u1"] = dict(db.docs["users/u1"], iapRole="pro")

    db.after_query = receipt_lands
    EntitlementResolver(db, StubVerifier(), claims_writer=claims).reconcile_billing_role("cus_1", "canceled")

    user = db.data("users/u1")
    assert (user["stripeRole"], user["iapRole"]) == ("free", "pro")
    assert claims.last == ("u1", {"isPro": True})


def test_role_write_runs_in_transaction(db, claims):
    db.put("users/u1", {"stripeCustomerId": "cus_1"})
    EntitlementResolver(db, StubVerifier(), claims_writer=claims).reconcile_billing_role("cus_1", "active")

    assert db.transactions[-1].writes == [("set", "users/u1")]


def test_subscription_id_is_stored_and_cleared(db, claims):
    db.put("users/u1", {"stripeCustomerId": "cus_1"})
    resolver = EntitlementResolver(db, StubVerifier(), claims_writer=claims)

    user_doc = resolver.reconcile_billing_role("cus_1", "active", subscription_id="sub_1")
    assert db.data("users/u1")["stripeSubscriptionId"] == "sub_1"
    assert user_doc.to_dict()["stripeRole"] == "pro"

    resolver.reconcile_billing_role("cus_1", "past_due", subscription_id="sub_1")
    assert db.data("users/u1")["stripeSubscriptionId"] == "sub_1"

    resolver.reconcile_billing_role("cus_1", "canceled", subscription_id="sub_1", subscription_ended=True)
    assert "stripeSubscriptionId" not in db.data("users/u1")
    assert db.data("users/u1")["stripeRole"] == "free"


def test_unknown_customer_changes_nothing(db, claims):
    db.put("users/u1", {"stripeCustomerId": "cus_1"})
    resolver = EntitlementResolver(db, StubVerifier(), claims_writer=claims)

    assert resolver.reconcile_billing_role("cus_missing", "active") is None
    assert resolver.reconcile_billing_role(None, "active") is None
    assert "stripeRole" not in db.data("users/u1")
    assert claims.calls == []


# -----------------------------------------------------------------------------
# IAP
# -----------------------------------------------------------------------------

def test_ios_latest_expiry_wins(db, claims):
    t1 = NOW + timedelta(days=1)
    t2 = NOW + timedelta(days=30)
    receipt = AppleReceiptResponse(
        status=0,
        latest_receipt_info=[
            AppleReceiptRecord(expires_date_ms=_ms(t2), original_transaction_id="txn-2"),
            AppleReceiptRecord(expires_date_ms=_ms(t1), original_transaction_id="txn-1"),
        ],
    )
    db.put("users/u1", {"stripeRole": "free"})
    verifier = StubVerifier(apple=receipt)
    resolver = EntitlementResolver(db, verifier, claims_writer=claims)

    subscribed = resolver.reconcile_iap_role("u1", "ios", "base64-receipt", sandbox=True, now=NOW)

    user = db.data("users/u1")
    assert subscribed is True
    assert user["iapRole"] == "pro"
    assert user["iapSubscriptionId"] == "txn-2"
    assert user["iapExpiryDate"] == datetime.fromtimestamp(_ms(t2) / 1000, tz=timezone.utc)
    assert verifier.calls == [("apple", "base64-receipt", True)]
    assert claims.last == ("u1", {"isPro": True})


def test_ios_expired_receipt_sets_free(db, claims):
    receipt = AppleReceiptResponse(
        status=0,
        latest_receipt_info=[AppleReceiptRecord(expires_date_ms=_ms(NOW - timedelta(days=1)))],
    )
    db.put("users/u1", {"iapRole": "pro", "stripeRole": "free"})
    resolver = EntitlementResolver(db, StubVerifier(apple=receipt), claims_writer=claims)

    assert resolver.reconcile_iap_role("u1", "ios", "r", now=NOW) is False
    assert db.data("users/u1")["iapRole"] == "free"
    assert claims.last == ("u1", {"isPro": False})


def test_iap_claim_sees_stripe_role_written_during_verification(db, claims):
    receipt = AppleReceiptResponse(
        status=0,
        latest_receipt_info=[AppleReceiptRecord(expires_date_ms=_ms(NOW - timedelta(days=1)))],
    )

    class SlowStore(StubVerifier):
        def verify_apple(self, receipt_data, *, sandbox):
            db.docs["users/u1"] = dict(db.docs["users/u1"], stripeRole="pro")
            return super().verify_apple(receipt_data, sandbox=sandbox)

    db.put("users/u1", {"stripeRole": "free", "iapRole": "pro"})
    resolver = EntitlementResolver(db, SlowStore(apple=receipt), claims_writer=claims)

    assert resolver.reconcile_iap_role("u1", "ios", "r", now=NOW) is False
    assert db.data("users/u1")["iapRole"] == "free"
    assert claims.last == ("u1", {"isPro": True})
    assert db.transactions[-1].writes == [("set", "users/u1")]


def test_ios_rejected_receipt_writes_nothing(db, claims):
    db.put("users/u1", {"iapRole": "pro"})
    resolver = EntitlementResolver(db, StubVerifier(apple=AppleReceiptResponse(status=21003)), claims_writer=claims)

    assert resolver.reconcile_iap_role("u1", "ios", "r", now=NOW) is False
    assert db.data("users/u1") == {"iapRole": "pro"}


def test_android_active_subscription(db, claims):
    purchase = GoogleSubscriptionPurchase(expiryTimeMillis=_ms(NOW + timedelta(days=7)))
    verifier = StubVerifier(google=purchase)
    resolver = EntitlementResolver(db, verifier, claims_writer=claims)

    receipt = {"subscriptionId": "pro_monthly", "purchaseToken": "tok"}
    assert resolver.reconcile_iap_role("u1", "android", receipt, now=NOW) is True

    user = db.data("users/u1")
    assert user["iapRole"] == "pro"
    assert user["iapSubscriptionId"] == "pro_monthly"
    assert verifier.calls == [("google", "pro_monthly", "tok")]


@pytest.mark.parametrize(
    "platform, receipt",
    [
        (None, "r"),
        ("ios", None),
        ("windows", "r"),
        ("android", {"subscriptionId": "pro_monthly"}),
        ("android", "not-a-dict"),
    ],
)
def test_bad_receipt_arguments(db, claims, platform, receipt):
    resolver = EntitlementResolver(db, StubVerifier(), claims_writer=claims)
    with pytest.raises(InvalidArgument):
        resolver.reconcile_iap_role("u1", platform, receipt, now=NOW)


def test_store_failure_is_internal(db, claims):
    error = IAPVerificationError(status_code=502, error="down", code="IAP_UNREACHABLE")
    resolver = EntitlementResolver(db, StubVerifier(error=error), claims_writer=claims)

    with pytest.raises(Internal):
        resolver.reconcile_iap_role("u1", "ios", "r", now=NOW)
    assert claims.calls == []


def test_latest_receipt_tie_keeps_first():
    first = AppleReceiptRecord(expires_date_ms=5, original_transaction_id="first")
    second = AppleReceiptRecord(expires_date_ms=5, original_transaction_id="second")
    assert latest_apple_receipt([first, second]).original_transaction_id == "first"
    assert latest_apple_receipt([]) is None
