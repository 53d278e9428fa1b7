from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, field_validator, model_validator

from backend.deps import get_store
from backend.security import require_roles, require_session
from backend.services import qr
from backend.services.lifecycle import PASS_STATUSES, REVIEW_STAGES
from database.db import GatepassStore, as_utc

router = APIRouter()

PASS_VIEWER_ROLES = ("HOSTEL_ATTENDANT", "SUPERINTENDENT", "SECURITY_GUARD", "ADMIN")
# reviewer role -> the status its queue holds
QUEUE_STATUS_OF_ROLE = {role: status for status, role in REVIEW_STAGES.items()}

# legacy clients send APPROVED/REJECTED
_REVIEW_ALIASES = {"APPROVED": "APPROVE", "REJECTED": "REJECT"}

HOME_DEFAULTS = {
    "room_no": "N/A",
    "branch": "N/A",
    "semester": "N/A",
    "section": "N/A",
    "destination_address": "N/A",
}


class PassCreate(BaseModel):
    """
    Flat request body; ``destination_type`` picks the variant.

    CHANDAKA / BHUBANESWAR need ``destination_details`` and ``reason``.
    HOME_OTHER needs ``from_date``; the rest of its fields fall back to
    defaults.
    """

    destination_type: Literal["CHANDAKA", "BHUBANESWAR", "HOME_OTHER"]
    reason: str | None = None
    expected_return_at: datetime
    destination_details: str | None = None

    # HOME_OTHER
    from_date: datetime | None = None
    destination_address: str | None = None
    room_no: str | None = None
    branch: str | None = None
    semester: str | None = None
    section: str | None = None
    means_of_travel: str | None = None
    local_guardian_name: str | None = None
    local_guardian_contact: str | None = None
    parent_name: str | None = None

    @field_validator("destination_type", mode="before")
    @classmethod
    def _upper_type(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_variant(self) -> "PassCreate":
        if self.destination_type == "HOME_OTHER":
            if self.from_date is None:
                raise ValueError("from_date is required for HOME_OTHER passes.")
            if as_utc(self.expected_return_at) < as_utc(self.from_date):
                raise ValueError("expected_return_at must not precede from_date.")
        else:
            if not (self.destination_details or "").strip():
                raise ValueError("destination_details is required.")
            if not (self.reason or "").strip():
                raise ValueError("reason is required.")
        return self


class ReviewRequest(BaseModel):
    status: Literal["APPROVE", "REJECT"]
    notes: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        key = value.strip().upper()
        return _REVIEW_ALIASES.get(key, key)


def _home_details(payload: PassCreate) -> dict[str, Any]:
    details: dict[str, Any] = {}
    for field, fallback in HOME_DEFAULTS.items():
        details[field] = (getattr(payload, field) or "").strip() or fallback
    details["from_date"] = payload.from_date.isoformat() if payload.from_date else None
    details["means_of_travel"] = (payload.means_of_travel or "").strip() or "Other"
    details["local_guardian_name"] = payload.local_guardian_name or None
    details["local_guardian_contact"] = payload.local_guardian_contact or None
    details["parent_name"] = payload.parent_name or None
    return details


def _parse_status_filter(status: str | None) -> list[str] | None:
    if not status:
        return None
    wanted = [s.strip().upper() for s in status.split(",") if s.strip()]
    unknown = [s for s in wanted if s not in PASS_STATUSES]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Invalid status filter: {', '.join(unknown)}")
    return wanted or None


def _visible_pass(store: GatepassStore, pass_id: str, session: dict) -> dict[str, Any]:
    row = store.get_pass(pass_id)
    if session["role"] == "STUDENT" and row["student_id"] != session["sub"]:
        raise HTTPException(status_code=404, detail="Gatepass not found.")
    return row


@router.post("/pass", status_code=201)
def create_pass(
    payload: PassCreate,
    session: dict = Depends(require_roles("STUDENT")),
    store: GatepassStore = Depends(get_store),
):
    if payload.destination_type == "HOME_OTHER":
        details = _home_details(payload)
        return store.create_pass(
            student_id=session["sub"],
            destination_type="HOME_OTHER",
            reason=(payload.reason or "").strip() or "No reason specified",
            destination_details=details["destination_address"],
            expected_return_at=payload.expected_return_at,
            details=details,
        )

    return store.create_pass(
        student_id=session["sub"],
        destination_type=payload.destination_type,
        reason=payload.reason.strip(),
        destination_details=payload.destination_details.strip(),
        expected_return_at=payload.expected_return_at,
    )


@router.get("/pass/my")
def my_passes(
    session: dict = Depends(require_roles("STUDENT")),
    store: GatepassStore = Depends(get_store),
):
    return store.list_passes(student_id=session["sub"])


@router.get("/pass")
def list_passes(
    status: str | None = None,
    _session: dict = Depends(require_roles(*PASS_VIEWER_ROLES)),
    store: GatepassStore = Depends(get_store),
):
    # Example: /pass?status=PENDING,ATTENDANT_APPROVED
    return store.list_passes(statuses=_parse_status_filter(status))


@router.get("/pass/pending")
def review_queue(
    session: dict = Depends(require_roles(*QUEUE_STATUS_OF_ROLE)),
    store: GatepassStore = Depends(get_store),
):
    """Passes waiting on the caller's review stage, oldest first."""
    return store.list_passes(
        statuses=[QUEUE_STATUS_OF_ROLE[session["role"]]],
        oldest_first=True,
    )


@router.get("/pass/{pass_id}")
def pass_detail(
    pass_id: str,
    session: dict = Depends(require_session),
    store: GatepassStore = Depends(get_store),
):
    return _visible_pass(store, pass_id, session)


@router.put("/pass/{pass_id}/status")
def review_pass(
    pass_id: str,
    payload: ReviewRequest,
    session: dict = Depends(require_session),
    store: GatepassStore = Depends(get_store),
):
    # Role/stage checks live in the lifecycle rules so the caller gets
    # forbidden vs invalid_transition.
    notes = (payload.notes or "").strip() or None
    return store.review_pass(
        pass_id,
        reviewer_id=session["sub"],
        role=session["role"],
        action=payload.status,
        notes=notes,
    )


@router.get("/pass/{pass_id}/qr")
def pass_qr_token(
    pass_id: str,
    session: dict = Depends(require_session),
    store: GatepassStore = Depends(get_store),
):
    _visible_pass(store, pass_id, session)
    return {"pass_id": pass_id, "token": store.issue_qr(pass_id)}


@router.get("/pass/{pass_id}/qr.png")
def pass_qr_image(
    pass_id: str,
    session: dict = Depends(require_session),
    store: GatepassStore = Depends(get_store),
):
    _visible_pass(store, pass_id, session)
    token = store.issue_qr(pass_id)
    return Response(content=qr.render_png(token), media_type="image/png")
