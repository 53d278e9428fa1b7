import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("GATEPASS_DB_PATH", BASE_DIR / "database" / "gatepass.db"))
SIGNING_KEY = (
    os.getenv("GATEPASS_SIGNING_KEY", "").strip()
    or secrets.token_urlsafe(32)
)
# Issued QR tokens must stay valid across restarts.
QR_SIGNING_KEY = (
    os.getenv("GATEPASS_QR_SIGNING_KEY", "").strip()
    or "gatepass-qr-secret-change-me"
)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("GATEPASS_AUTH_TOKEN_TTL_SECONDS", "86400"))
ADMIN_EMAIL = os.getenv("GATEPASS_ADMIN_EMAIL", "admin@hostel.local").strip().lower() or "admin@hostel.local"
ADMIN_PASSWORD = os.getenv("GATEPASS_ADMIN_PASSWORD", "admin123").strip() or "admin123"
ADMIN_FULL_NAME = os.getenv("GATEPASS_ADMIN_FULL_NAME", "System Admin").strip() or "System Admin"
LOG_LEVEL = os.getenv("GATEPASS_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("GATEPASS_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:8080"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("GATEPASS_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("GATEPASS_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("GATEPASS_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("GATEPASS_ENABLE_DEBUG_ENDPOINTS"), False)

# Scan log paging
SCAN_LOG_PAGE_SIZE = max(1, int(os.getenv("GATEPASS_SCAN_LOG_PAGE_SIZE", "50")))
SCAN_LOG_MAX_PAGE_SIZE = max(
    SCAN_LOG_PAGE_SIZE,
    int(os.getenv("GATEPASS_SCAN_LOG_MAX_PAGE_SIZE", "200")),
)

# Seconds a writer waits on a locked database before giving up.
DB_BUSY_TIMEOUT_SECONDS = float(os.getenv("GATEPASS_DB_BUSY_TIMEOUT_SECONDS", "5"))
