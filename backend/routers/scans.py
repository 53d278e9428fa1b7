from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator

from backend.config import SCAN_LOG_MAX_PAGE_SIZE, SCAN_LOG_PAGE_SIZE
from backend.deps import get_store
from backend.security import require_roles
from database.db import GatepassStore

router = APIRouter()


class ScanRequest(BaseModel):
    token: str
    # Optional; when sent it must agree with what the pass status implies.
    action: Literal["EXIT", "ENTRY"] | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


@router.post("/scan")
def scan_pass(
    payload: ScanRequest,
    session: dict = Depends(require_roles("SECURITY_GUARD")),
    store: GatepassStore = Depends(get_store),
):
    result = store.record_scan(
        payload.token,
        guard_id=session["sub"],
        requested_action=payload.action,
    )
    return {
        "message": f"Scan successful: {result['status']}",
        **result,
    }


@router.get("/scan-logs")
def scan_logs(
    limit: int = Query(default=SCAN_LOG_PAGE_SIZE, ge=1, le=SCAN_LOG_MAX_PAGE_SIZE),
    pass_id: str | None = None,
    _session: dict = Depends(require_roles("SECURITY_GUARD", "ADMIN")),
    store: GatepassStore = Depends(get_store),
):
    rows = store.list_scan_logs(limit=limit, pass_id=pass_id)
    return {"rows": rows, "limit": limit}
