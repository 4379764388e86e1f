import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from suite_api.errors import Internal, InvalidArgument
from suite_api.services.offers import sign_promotional_offer


@pytest.fixture(scope="module")
def signing_key():
    key = ec.generate_private_key(ec.SECP256R1())
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("utf-8")
    return key, pem


def test_signature_verifies_with_public_key(signing_key):
    key, pem = signing_key
    # Secrets managers often store the PEM with escaped newlines
    escaped = pem.replace("\n", "\\n")

    signed = sign_promotional_offer(
        "pro_monthly", "winback", key_id="KEY123", issuer_id="issuer-1", private_key=escaped
    )

    assert signed["keyId"] == "KEY123"
    assert len(signed["nonce"]) == 32
    assert jwt.get_unverified_header(signed["signature"])["kid"] == "KEY123"
    claims = jwt.decode(signed["signature"], key.public_key(), algorithms=["ES256"])
    assert claims["productIdentifier"] == "pro_monthly"
    assert claims["offerIdentifier"] == "winback"
    assert claims["nonce"] == signed["nonce"]
    assert claims["timestamp"] == signed["timestamp"]


def test_nonce_changes_per_call(signing_key):
    _, pem = signing_key
    kwargs = dict(key_id="K", issuer_id="I", private_key=pem)
    first = sign_promotional_offer("p", "o", **kwargs)
    second = sign_promotional_offer("p", "o", **kwargs)
    assert first["nonce"] != second["nonce"]


@pytest.mark.parametrize("product, offer", [(None, "o"), ("p", ""), (None, None)])
def test_identifiers_are_required(signing_key, product, offer):
    _, pem = signing_key
    with pytest.raises(InvalidArgument):
        sign_promotional_offer(product, offer, key_id="K", issuer_id="I", private_key=pem)


def test_missing_key_material_is_internal():
    with pytest.raises(Internal):
        sign_promotional_offer("p", "o", key_id="K", issuer_id="I", private_key="")
