import base64
import hashlib
import hmac


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sign(key: str, payload_b64: str) -> str:
    digest = hmac.new(
        key.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return b64url_encode(digest)


def split_signed(token: str, key: str) -> str | None:
    """
    Return the payload part of ``payload.signature`` when the signature is
    valid for ``key``, else None.

    Non-ASCII input never matches.
    """
    if not token or "." not in token or not token.isascii():
        return None
    payload_b64, signature = token.split(".", 1)
    if not hmac.compare_digest(signature, sign(key, payload_b64)):
        return None
    return payload_b64
