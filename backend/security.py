import json
import time
from typing import Any, Callable

from fastapi import Depends, Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, SIGNING_KEY
from backend.signing import b64url_decode, b64url_encode, sign, split_signed


def issue_session_token(user_id: str, *, role: str) -> tuple[str, dict[str, Any]]:
    now = int(time.time())
    exp = now + AUTH_TOKEN_TTL_SECONDS
    payload = {
        "sub": user_id.strip(),
        "role": role,
        "iat": now,
        "exp": exp,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{sign(SIGNING_KEY, payload_b64)}"
    return token, payload


def decode_session_token(token: str) -> dict[str, Any] | None:
    payload_b64 = split_signed(token, SIGNING_KEY)
    if payload_b64 is None:
        return None

    try:
        payload_raw = b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    role = payload.get("role")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(role, str) or not role:
        return None
    if not isinstance(exp, int):
        return None
    if exp < int(time.time()):
        return None

    return payload


def require_session(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    payload = decode_session_token(token.strip())
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")

    return payload


def require_roles(*roles: str) -> Callable[..., dict[str, Any]]:
    """Dependency factory: the session must belong to one of ``roles``."""
    allowed = set(roles)

    def _check(session: dict[str, Any] = Depends(require_session)) -> dict[str, Any]:
        if session.get("role") not in allowed:
            raise HTTPException(status_code=403, detail="Access denied.")
        return session

    return _check
