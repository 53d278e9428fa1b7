import io
import json

import qrcode

from backend.config import QR_SIGNING_KEY
from backend.errors import InvalidToken
from backend.signing import b64url_decode, b64url_encode, sign, split_signed

TOKEN_TYPE = "gatepass"


def issue_token(pass_id: str) -> str:
    """
    Build the QR payload for a pass.

    Deterministic for a given pass id and key: no timestamp or nonce, so
    re-issuing yields the same bytes and an already displayed QR stays valid.
    """
    payload = {"pid": pass_id, "typ": TOKEN_TYPE}
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = b64url_encode(payload_json.encode("utf-8"))
    return f"{payload_b64}.{sign(QR_SIGNING_KEY, payload_b64)}"


def verify_token(token: str) -> str:
    """Return the pass id carried by a genuine token, else raise InvalidToken."""
    candidate = (token or "").strip()
    if not candidate or "." not in candidate or not candidate.isascii():
        raise InvalidToken("Malformed QR token.")

    payload_b64 = split_signed(candidate, QR_SIGNING_KEY)
    if payload_b64 is None:
        raise InvalidToken("QR token signature mismatch.")

    try:
        payload = json.loads(b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise InvalidToken("QR token payload is unreadable.")

    if not isinstance(payload, dict) or payload.get("typ") != TOKEN_TYPE:
        raise InvalidToken("QR token is not a gatepass token.")

    pass_id = payload.get("pid")
    if not isinstance(pass_id, str) or not pass_id.strip():
        raise InvalidToken("QR token carries no pass id.")
    return pass_id


def render_png(token: str) -> bytes:
    img = qrcode.make(token)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
