"""
Pass lifecycle rules.

Pure decision functions: they look at the current status and the actor and
either return what should happen next or raise a domain error. Nothing here
touches the database; ``database.db.GatepassStore`` applies the decisions
atomically.

Approval chain::

    PENDING --attendant--> ATTENDANT_APPROVED --superintendent--> SUPERINTENDENT_APPROVED
       |                        |
       +--------reject----------+--> REJECTED (terminal)

    SUPERINTENDENT_APPROVED --exit scan--> EXITED --entry scan--> ENTERED
"""

from typing import Literal, NamedTuple

from backend.errors import Forbidden, InvalidState, InvalidTransition, ValidationError

PassStatus = Literal[
    "PENDING",
    "ATTENDANT_APPROVED",
    "SUPERINTENDENT_APPROVED",
    "REJECTED",
    "EXITED",
    "ENTERED",
]
Role = Literal["STUDENT", "HOSTEL_ATTENDANT", "SUPERINTENDENT", "SECURITY_GUARD", "ADMIN"]
ReviewAction = Literal["APPROVE", "REJECT"]
ScanAction = Literal["EXIT", "ENTRY"]
ExtensionStatus = Literal["PENDING", "APPROVED", "REJECTED"]
DestinationType = Literal["CHANDAKA", "BHUBANESWAR", "HOME_OTHER"]

PASS_STATUSES: tuple[str, ...] = (
    "PENDING",
    "ATTENDANT_APPROVED",
    "SUPERINTENDENT_APPROVED",
    "REJECTED",
    "EXITED",
    "ENTERED",
)
ROLES: tuple[str, ...] = ("STUDENT", "HOSTEL_ATTENDANT", "SUPERINTENDENT", "SECURITY_GUARD", "ADMIN")
STAFF_ROLES: tuple[str, ...] = ("HOSTEL_ATTENDANT", "SUPERINTENDENT", "SECURITY_GUARD")
REVIEWER_ROLES: tuple[str, ...] = ("HOSTEL_ATTENDANT", "SUPERINTENDENT")
DESTINATION_TYPES: tuple[str, ...] = ("CHANDAKA", "BHUBANESWAR", "HOME_OTHER")

# status awaiting review -> role that reviews it
REVIEW_STAGES: dict[str, str] = {
    "PENDING": "HOSTEL_ATTENDANT",
    "ATTENDANT_APPROVED": "SUPERINTENDENT",
}
_STAGE_OF_ROLE = {role: status for status, role in REVIEW_STAGES.items()}

# forward order of the non-terminal statuses
_FORWARD_ORDER: tuple[str, ...] = (
    "PENDING",
    "ATTENDANT_APPROVED",
    "SUPERINTENDENT_APPROVED",
    "EXITED",
    "ENTERED",
)

_APPROVED_STATUS_FOR_ROLE: dict[str, str] = {
    "HOSTEL_ATTENDANT": "ATTENDANT_APPROVED",
    "SUPERINTENDENT": "SUPERINTENDENT_APPROVED",
}

_SCAN_ACTION_FOR_STATUS: dict[str, str] = {
    "SUPERINTENDENT_APPROVED": "EXIT",
    "EXITED": "ENTRY",
}
_STATUS_AFTER_SCAN: dict[str, str] = {
    "EXIT": "EXITED",
    "ENTRY": "ENTERED",
}


class ReviewDecision(NamedTuple):
    from_status: str
    to_status: str
    reviewer: Literal["attendant", "superintendent"]
    issue_qr: bool


class ScanDecision(NamedTuple):
    action: str
    from_status: str
    to_status: str


def _stage_position(status: str) -> int:
    try:
        return _FORWARD_ORDER.index(status)
    except ValueError:
        return len(_FORWARD_ORDER)


def decide_review(current_status: str, role: str, action: str) -> ReviewDecision:
    """
    Resolve an APPROVE/REJECT request against the transition table.

    Raises:
      - ValidationError: action is neither APPROVE nor REJECT
      - Forbidden: role is not a reviewer, or its stage has not been reached
      - InvalidTransition: status has no open review stage, or the actor's
        stage is already behind the pass (e.g. approving twice)
    """
    if action not in ("APPROVE", "REJECT"):
        raise ValidationError(f"Unknown review action: {action}")
    if role not in REVIEWER_ROLES:
        raise Forbidden(f"Role {role} cannot review passes.")

    stage_role = REVIEW_STAGES.get(current_status)
    if stage_role is None:
        raise InvalidTransition(f"Pass in status {current_status} cannot be reviewed.")

    if stage_role != role:
        own_stage = _STAGE_OF_ROLE[role]
        if _stage_position(own_stage) < _stage_position(current_status):
            raise InvalidTransition(
                f"Pass already moved past {own_stage}; cannot {action.lower()} from {current_status}."
            )
        raise Forbidden(f"Pass in status {current_status} awaits {stage_role} review.")

    to_status = _APPROVED_STATUS_FOR_ROLE[role] if action == "APPROVE" else "REJECTED"
    return ReviewDecision(
        from_status=current_status,
        to_status=to_status,
        reviewer="attendant" if role == "HOSTEL_ATTENDANT" else "superintendent",
        issue_qr=to_status == "SUPERINTENDENT_APPROVED",
    )


def decide_scan(current_status: str, requested_action: str | None = None) -> ScanDecision:
    """
    Infer EXIT/ENTRY from the pass status.

    A caller-supplied action is accepted only when it agrees with the inferred
    one; it never overrides it.
    """
    if requested_action is not None and requested_action not in _STATUS_AFTER_SCAN:
        raise ValidationError(f"Unknown scan action: {requested_action}")

    action = _SCAN_ACTION_FOR_STATUS.get(current_status)
    if action is None:
        if requested_action == "ENTRY":
            raise InvalidState("Pass has not exited; entry not allowed.")
        raise InvalidState("Pass not approved for exit.")

    if requested_action is not None and requested_action != action:
        if requested_action == "EXIT":
            raise InvalidState("Pass not approved for exit.")
        raise InvalidState("Pass has not exited; entry not allowed.")

    return ScanDecision(
        action=action,
        from_status=current_status,
        to_status=_STATUS_AFTER_SCAN[action],
    )


def decide_extension_review(current_status: str, role: str, decision: str) -> str:
    if decision not in ("APPROVE", "REJECT"):
        raise ValidationError(f"Unknown review action: {decision}")
    if role not in REVIEWER_ROLES:
        raise Forbidden(f"Role {role} cannot review extension requests.")
    if current_status != "PENDING":
        raise InvalidTransition(f"Extension request already {current_status.lower()}.")
    return "APPROVED" if decision == "APPROVE" else "REJECTED"
