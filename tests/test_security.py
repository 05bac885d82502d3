"""Тесты проверки токенов и подписи webhook."""
import hashlib
import hmac
import time

from jose import jwt

from app.core.security import compute_webhook_signature, decode_access_token, verify_webhook_signature

SECRET = "webhook-secret"


def test_signature_matches_hmac_sha256_hex():
    body = b'{"event":"payment.success","data":{"transactionId":"tx_1"}}'
    expected = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()

    assert compute_webhook_signature(body, SECRET) == expected
    assert verify_webhook_signature(body, expected, SECRET)
    assert verify_webhook_signature(body, expected.upper(), SECRET)


def test_signature_rejects_modified_body_or_missing_header():
    body = b'{"event":"payment.failed"}'
    signature = compute_webhook_signature(body, SECRET)

    assert not verify_webhook_signature(body + b" ", signature, SECRET)
    assert not verify_webhook_signature(body, signature, "other-secret")
    assert not verify_webhook_signature(body, None, SECRET)
    assert not verify_webhook_signature(body, "", SECRET)


def test_decode_access_token():
    token = jwt.encode(
        {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) + 60},
        "jwt-secret",
        algorithm="HS256",
    )

    assert decode_access_token(token, "jwt-secret", "authenticated")["sub"] == "user-1"
    assert decode_access_token(token, "wrong-secret", "authenticated") is None
    assert decode_access_token(token, "jwt-secret", "other-audience") is None
    assert decode_access_token("not-a-token", "jwt-secret") is None


def test_decode_access_token_rejects_expired():
    token = jwt.encode(
        {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) - 60},
        "jwt-secret",
        algorithm="HS256",
    )

    assert decode_access_token(token, "jwt-secret", "authenticated") is None


def test_signature_with_non_ascii_characters_is_rejected():
    body = b'{"event":"payment.success"}'

    assert not verify_webhook_signature(body, "\xe9abc", SECRET)
    assert not verify_webhook_signature(body, "é" * 64, SECRET)
