from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    ENABLE_DEBUG_ENDPOINTS,
    SCAN_LOG_MAX_PAGE_SIZE,
    SCAN_LOG_PAGE_SIZE,
)
from backend.deps import get_store
from backend.security import require_roles
from backend.services.lifecycle import DESTINATION_TYPES, PASS_STATUSES, REVIEW_STAGES
from database.db import GatepassStore

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(
    _session: dict = Depends(require_roles("ADMIN")),
    store: GatepassStore = Depends(get_store),
):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(store.db_path)}


@router.get("/config/gatepass")
def gatepass_config():
    return {
        "destination_types": list(DESTINATION_TYPES),
        "statuses": list(PASS_STATUSES),
        "review_stages": dict(REVIEW_STAGES),
        "scan_log_page_size": SCAN_LOG_PAGE_SIZE,
        "scan_log_max_page_size": SCAN_LOG_MAX_PAGE_SIZE,
    }
