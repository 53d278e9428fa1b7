from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from backend.deps import get_store
from backend.security import require_roles, require_session
from database.db import GatepassStore

router = APIRouter()

EXTENSION_STATUSES = {"PENDING", "APPROVED", "REJECTED"}
_REVIEW_ALIASES = {"APPROVED": "APPROVE", "REJECTED": "REJECT"}


class ExtensionCreate(BaseModel):
    pass_id: str
    new_expected_return_at: datetime
    reason: str = Field(min_length=1)


class ExtensionReview(BaseModel):
    status: Literal["APPROVE", "REJECT"]
    notes: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        key = value.strip().upper()
        return _REVIEW_ALIASES.get(key, key)


@router.post("/extension", status_code=201)
def request_extension(
    payload: ExtensionCreate,
    session: dict = Depends(require_roles("STUDENT")),
    store: GatepassStore = Depends(get_store),
):
    return store.create_extension(
        pass_id=payload.pass_id,
        student_id=session["sub"],
        new_expected_return_at=payload.new_expected_return_at,
        reason=payload.reason,
    )


@router.get("/extension/my")
def my_extensions(
    session: dict = Depends(require_roles("STUDENT")),
    store: GatepassStore = Depends(get_store),
):
    return store.list_extensions(student_id=session["sub"])


@router.get("/extension")
def list_extensions(
    status: str | None = None,
    _session: dict = Depends(require_roles("HOSTEL_ATTENDANT", "SUPERINTENDENT")),
    store: GatepassStore = Depends(get_store),
):
    clean_status = status.strip().upper() if status else None
    if clean_status and clean_status not in EXTENSION_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status filter.")
    return store.list_extensions(status=clean_status)


@router.put("/extension/{ext_id}/status")
def review_extension(
    ext_id: str,
    payload: ExtensionReview,
    session: dict = Depends(require_session),
    store: GatepassStore = Depends(get_store),
):
    notes = (payload.notes or "").strip() or None
    return store.review_extension(
        ext_id,
        reviewer_id=session["sub"],
        role=session["role"],
        decision=payload.status,
        notes=notes,
    )
