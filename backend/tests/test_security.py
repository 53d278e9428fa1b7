import pytest
from fastapi import HTTPException

from backend.security import decode_session_token, issue_session_token, require_session


def test_session_token_round_trip():
    token, claims = issue_session_token("user-1", role="STUDENT")
    decoded = decode_session_token(token)
    assert decoded == claims
    assert decoded["role"] == "STUDENT"


def test_tampered_session_token_is_rejected():
    token, _ = issue_session_token("user-1", role="STUDENT")
    admin_token, _ = issue_session_token("user-1", role="ADMIN")
    forged = f"{admin_token.split('.', 1)[0]}.{token.split('.', 1)[1]}"
    assert decode_session_token(forged) is None


@pytest.mark.parametrize("garbage", ["", "no-dot", "é.abc", "abc.é"])
def test_malformed_session_tokens_decode_to_none(garbage):
    assert decode_session_token(garbage) is None


def test_non_ascii_bearer_token_is_unauthorized():
    with pytest.raises(HTTPException) as exc:
        require_session(authorization="Bearer abc.é")
    assert exc.value.status_code == 401
    assert exc.value.detail == "Invalid or expired session token."
