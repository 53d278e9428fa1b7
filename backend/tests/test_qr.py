import pytest

import backend.services.qr as qr
from backend.errors import InvalidToken, NotFound


def test_issue_is_deterministic_per_pass():
    first = qr.issue_token("pass-123")
    second = qr.issue_token("pass-123")
    assert first == second
    assert qr.issue_token("pass-456") != first


def test_verify_recovers_pass_id():
    token = qr.issue_token("5b0c9a5e-5a0d-4f4e-9a52-3c1f0f5b6d7e")
    assert qr.verify_token(token) == "5b0c9a5e-5a0d-4f4e-9a52-3c1f0f5b6d7e"


def test_tampered_payload_is_rejected():
    token = qr.issue_token("pass-123")
    other_payload = qr.issue_token("pass-999").split(".", 1)[0]
    forged = f"{other_payload}.{token.split('.', 1)[1]}"
    with pytest.raises(InvalidToken):
        qr.verify_token(forged)


def test_token_from_another_key_is_rejected(monkeypatch):
    token = qr.issue_token("pass-123")
    monkeypatch.setattr(qr, "QR_SIGNING_KEY", "rotated-key")
    with pytest.raises(InvalidToken):
        qr.verify_token(token)


@pytest.mark.parametrize("garbage", ["", "no-dot", "abc.def", "   ", "é.abc", "abc.é", "ünïcode"])
def test_malformed_tokens_are_invalid(garbage):
    with pytest.raises(InvalidToken):
        qr.verify_token(garbage)


def test_invalid_token_is_a_not_found():
    assert issubclass(InvalidToken, NotFound)


def test_render_png_produces_png_bytes():
    png = qr.render_png(qr.issue_token("pass-123"))
    assert png.startswith(b"\x89PNG\r\n\x1a\n")
