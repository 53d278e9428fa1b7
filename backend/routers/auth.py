import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.deps import get_store
from backend.security import issue_session_token, require_session
from database.db import GatepassStore

router = APIRouter()


class LoginRequest(BaseModel):
    email: str
    password: str


class StudentRegistration(BaseModel):
    email: str
    password: str
    full_name: str
    hostel: str | None = None
    roll_no: str | None = None
    parent_contact: str | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _token_response(user: dict) -> dict:
    token, claims = issue_session_token(user["id"], role=user["role"])
    now = int(time.time())
    return {
        "access_token": token,
        "token_type": "bearer",
        "role": claims["role"],
        "expires_at": claims["exp"],
        "expires_in": max(0, int(claims["exp"]) - now),
        "user": user,
    }


@router.post("/auth/register", status_code=201)
def register_student(payload: StudentRegistration, store: GatepassStore = Depends(get_store)):
    # Staff accounts are provisioned by admins only.
    user = store.create_user(
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        role="STUDENT",
        hostel=_clean(payload.hostel),
        roll_no=_clean(payload.roll_no),
        parent_contact=_clean(payload.parent_contact),
    )
    return _token_response(user)


@router.post("/auth/login")
def login(payload: LoginRequest, store: GatepassStore = Depends(get_store)):
    email = payload.email.strip()
    password = payload.password.strip()

    if not email:
        raise HTTPException(status_code=400, detail="Email is required.")
    if not password:
        raise HTTPException(status_code=400, detail="Password is required.")

    user = store.verify_credentials(email, password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return _token_response(user)


@router.get("/auth/me")
def auth_me(session: dict = Depends(require_session), store: GatepassStore = Depends(get_store)):
    user = store.get_user(session["sub"])
    return {
        **user,
        "expires_at": session.get("exp"),
        "issued_at": session.get("iat"),
    }
