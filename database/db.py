import hashlib
import hmac
import json
import secrets
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from backend.app_logger import get_logger
from backend.config import (
    ADMIN_EMAIL,
    ADMIN_FULL_NAME,
    ADMIN_PASSWORD,
    DB_BUSY_TIMEOUT_SECONDS,
    DB_PATH,
)
from backend.errors import Conflict, InvalidState, NotFound, ValidationError
from backend.services import qr
from backend.services.alerts import OverdueHook, log_overdue_entry
from backend.services.lifecycle import (
    decide_extension_review,
    decide_review,
    decide_scan,
)

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000
GATEPASS_MIGRATION_FILE = Path(__file__).resolve().parent / "migrations" / "001_gatepass.sql"
GATEPASS_TABLES = {"users", "passes", "scan_logs", "extension_requests"}

# statuses in which a pass carries a QR token
QR_BEARING_STATUSES = {"SUPERINTENDENT_APPROVED", "EXITED", "ENTERED"}

logger = get_logger("store")

# pass columns plus the student's current profile
PASS_SELECT = """
    SELECT
        p.*,
        u.email AS student_email,
        u.full_name AS student_full_name,
        u.roll_no AS student_roll_no,
        u.hostel AS student_hostel,
        u.parent_contact AS student_parent_contact
    FROM passes p
    LEFT JOIN users u ON u.id = p.student_id
"""

Clock = Callable[[], datetime]


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # naive datetimes are taken as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc_iso(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="microseconds")


def parse_utc(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))


def _user_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "full_name": row["full_name"],
        "role": row["role"],
        "hostel": row["hostel"],
        "roll_no": row["roll_no"],
        "parent_contact": row["parent_contact"],
        "created_at": row["created_at"],
    }


def _pass_from_row(row: sqlite3.Row) -> dict[str, Any]:
    details = json.loads(row["details_json"] or "{}")
    return {
        "id": row["id"],
        "destination_type": row["destination_type"],
        "student_id": row["student_id"],
        "student_name": row["student_name"],
        "status": row["status"],
        "reason": row["reason"],
        "destination_details": row["destination_details"],
        "details": details,
        "expected_return_at": row["expected_return_at"],
        "attendant_id": row["attendant_id"],
        "attendant_notes": row["attendant_notes"],
        "superintendent_id": row["superintendent_id"],
        "superintendent_notes": row["superintendent_notes"],
        "qr_token": row["qr_token"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "student": {
            "id": row["student_id"],
            "email": row["student_email"],
            "full_name": row["student_full_name"],
            "roll_no": row["student_roll_no"],
            "hostel": row["student_hostel"],
            "parent_contact": row["student_parent_contact"],
        },
    }


def _extension_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "pass_id": row["pass_id"],
        "student_id": row["student_id"],
        "new_expected_return_at": row["new_expected_return_at"],
        "reason": row["reason"],
        "status": row["status"],
        "reviewed_by": row["reviewed_by"],
        "review_notes": row["review_notes"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class GatepassStore:
    """
    SQLite-backed persistence handle for the gatepass service.

    One instance per process, built at startup and passed to whoever needs it.
    Each operation opens its own connection; every multi-write operation runs
    inside ``BEGIN IMMEDIATE`` and updates pass status only where the status is
    still the one that was read (zero rows affected -> Conflict).
    """

    def __init__(
        self,
        db_path: Path | str = DB_PATH,
        *,
        clock: Clock = utc_now,
        overdue_hook: OverdueHook = log_overdue_entry,
        busy_timeout: float = DB_BUSY_TIMEOUT_SECONDS,
    ):
        self.db_path = Path(db_path)
        self.clock = clock
        self.overdue_hook = overdue_hook
        self.busy_timeout = busy_timeout
        self._closed = False

    # -----------------------------
    # Connections
    # -----------------------------
    def connect(self) -> sqlite3.Connection:
        if self._closed:
            raise RuntimeError("GatepassStore is closed.")
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def now_iso(self) -> str:
        return to_utc_iso(self.clock())

    def create_tables(self) -> None:
        # (re)opens the store; a lifespan may run more than once per app
        self._closed = False
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.connect()
        try:
            rows = conn.execute(
                """
                SELECT name
                FROM sqlite_master
                WHERE type='table'
                """
            ).fetchall()
            existing = {str(row[0]) for row in rows}
            if not GATEPASS_TABLES.issubset(existing):
                sql = GATEPASS_MIGRATION_FILE.read_text(encoding="utf-8")
                conn.executescript(sql)
        finally:
            conn.close()

        self._ensure_default_admin()

    def close(self) -> None:
        self._closed = True

    def _ensure_default_admin(self) -> None:
        email = (ADMIN_EMAIL or "").strip().lower()
        password = (ADMIN_PASSWORD or "").strip()
        if not email or not password:
            return

        with self._writing() as conn:
            row = conn.execute(
                """
                SELECT id
                FROM users
                WHERE email = ? COLLATE NOCASE
                """,
                (email,),
            ).fetchone()
            if row:
                return
            conn.execute(
                """
                INSERT INTO users (id, email, password_hash, full_name, role, created_at)
                VALUES (?, ?, ?, ?, 'ADMIN', ?)
                """,
                (str(uuid.uuid4()), email, _hash_password(password), ADMIN_FULL_NAME, self.now_iso()),
            )
        logger.info("Seeded default admin %s", email)

    # -----------------------------
    # Users
    # -----------------------------
    def create_user(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        role: str,
        hostel: str | None = None,
        roll_no: str | None = None,
        parent_contact: str | None = None,
    ) -> dict[str, Any]:
        clean_email = email.strip().lower()
        clean_password = password.strip()
        clean_name = full_name.strip()
        if not clean_email or not clean_password or not clean_name:
            raise ValidationError("Email, password and full name are required.")

        user_id = str(uuid.uuid4())
        try:
            with self._writing() as conn:
                conn.execute(
                    """
                    INSERT INTO users (
                        id, email, password_hash, full_name, role,
                        hostel, roll_no, parent_contact, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        clean_email,
                        _hash_password(clean_password),
                        clean_name,
                        role,
                        hostel,
                        roll_no,
                        parent_contact,
                        self.now_iso(),
                    ),
                )
        except sqlite3.IntegrityError:
            raise Conflict("User already exists.")

        logger.info("Created %s account %s", role, clean_email)
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> dict[str, Any]:
        with self._reading() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise NotFound("User not found.")
        return _user_from_row(row)

    def verify_credentials(self, email: str, password: str) -> dict[str, Any] | None:
        clean_email = email.strip().lower()
        clean_password = password.strip()
        if not clean_email or not clean_password:
            return None

        with self._reading() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM users
                WHERE email = ? COLLATE NOCASE
                """,
                (clean_email,),
            ).fetchone()

        if not row or not _verify_password(clean_password, row["password_hash"]):
            return None
        return _user_from_row(row)

    def list_users(self, roles: list[str] | tuple[str, ...]) -> list[dict[str, Any]]:
        placeholders = ", ".join("?" for _ in roles)
        with self._reading() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM users
                WHERE role IN ({placeholders})
                ORDER BY created_at DESC
                """,
                tuple(roles),
            ).fetchall()
        return [_user_from_row(r) for r in rows]

    # -----------------------------
    # Passes
    # -----------------------------
    def create_pass(
        self,
        *,
        student_id: str,
        destination_type: str,
        reason: str,
        expected_return_at: datetime,
        destination_details: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        student = self.get_user(student_id)
        pass_id = str(uuid.uuid4())
        now = self.now_iso()

        with self._writing() as conn:
            conn.execute(
                """
                INSERT INTO passes (
                    id, destination_type, student_id, student_name, status,
                    reason, destination_details, details_json, expected_return_at,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, 'PENDING', ?, ?, ?, ?, ?, ?)
                """,
                (
                    pass_id,
                    destination_type,
                    student_id,
                    student["full_name"] or "Unknown",
                    reason,
                    destination_details,
                    json.dumps(details or {}, sort_keys=True, default=str),
                    to_utc_iso(expected_return_at),
                    now,
                    now,
                ),
            )

        logger.info("Pass %s (%s) requested by %s", pass_id, destination_type, student_id)
        return self.get_pass(pass_id)

    def get_pass(self, pass_id: str) -> dict[str, Any]:
        with self._reading() as conn:
            row = conn.execute(f"{PASS_SELECT} WHERE p.id = ?", (pass_id,)).fetchone()
        if not row:
            raise NotFound("Gatepass not found.")
        return _pass_from_row(row)

    def list_passes(
        self,
        *,
        statuses: list[str] | None = None,
        student_id: str | None = None,
        oldest_first: bool = False,
    ) -> list[dict[str, Any]]:
        where = ["1=1"]
        params: list[Any] = []
        if statuses:
            where.append(f"p.status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if student_id is not None:
            where.append("p.student_id = ?")
            params.append(student_id)
        order = "ASC" if oldest_first else "DESC"

        with self._reading() as conn:
            rows = conn.execute(
                f"""
                {PASS_SELECT}
                WHERE {" AND ".join(where)}
                ORDER BY p.created_at {order}, p.rowid {order}
                """,
                params,
            ).fetchall()
        return [_pass_from_row(r) for r in rows]

    def review_pass(
        self,
        pass_id: str,
        *,
        reviewer_id: str,
        role: str,
        action: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """
        Apply an attendant/superintendent APPROVE or REJECT.

        The decision is made on the status read here; the write only lands if
        the row still has that status.
        """
        current = self.get_pass(pass_id)
        decision = decide_review(current["status"], role, action)
        token = qr.issue_token(pass_id) if decision.issue_qr else None
        reviewer_id_col = f"{decision.reviewer}_id"
        reviewer_notes_col = f"{decision.reviewer}_notes"

        with self._writing() as conn:
            cur = conn.execute(
                f"""
                UPDATE passes
                SET status = ?,
                    {reviewer_id_col} = ?,
                    {reviewer_notes_col} = ?,
                    qr_token = COALESCE(qr_token, ?),
                    updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    decision.to_status,
                    reviewer_id,
                    notes,
                    token,
                    self.now_iso(),
                    pass_id,
                    decision.from_status,
                ),
            )
            if cur.rowcount != 1:
                raise Conflict("Pass was updated concurrently; reload and retry.")

        logger.info(
            "Pass %s %s -> %s by %s %s",
            pass_id,
            decision.from_status,
            decision.to_status,
            role,
            reviewer_id,
        )
        return self.get_pass(pass_id)

    def issue_qr(self, pass_id: str) -> str:
        """
        Return the pass's verification token.

        An existing token is returned unchanged; a fully approved pass without
        one gets it minted once.
        """
        current = self.get_pass(pass_id)
        if current["qr_token"]:
            return current["qr_token"]
        if current["status"] not in QR_BEARING_STATUSES:
            raise InvalidState("Pass is not fully approved; no QR code issued.")

        with self._writing() as conn:
            conn.execute(
                """
                UPDATE passes
                SET qr_token = COALESCE(qr_token, ?)
                WHERE id = ?
                """,
                (qr.issue_token(pass_id), pass_id),
            )
            row = conn.execute("SELECT qr_token FROM passes WHERE id = ?", (pass_id,)).fetchone()
        return row["qr_token"]

    # -----------------------------
    # Scan ledger
    # -----------------------------
    def record_scan(
        self,
        token: str,
        *,
        guard_id: str,
        requested_action: str | None = None,
    ) -> dict[str, Any]:
        """
        Process one gate scan: verify the token, infer EXIT/ENTRY from the live
        pass status, then update the status and append the log entry in one
        transaction.
        """
        pass_id = qr.verify_token(token)
        current = self.get_pass(pass_id)
        decision = decide_scan(current["status"], requested_action)
        if current["qr_token"] != token.strip():
            raise InvalidState("QR code does not match the issued pass.")

        now = as_utc(self.clock())
        scanned_at = to_utc_iso(now)
        overdue = decision.action == "ENTRY" and parse_utc(current["expected_return_at"]) < now

        with self._writing() as conn:
            cur = conn.execute(
                """
                UPDATE passes
                SET status = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (decision.to_status, scanned_at, pass_id, decision.from_status),
            )
            if cur.rowcount != 1:
                raise Conflict("Pass was scanned concurrently; scan again.")
            cur = conn.execute(
                """
                INSERT INTO scan_logs (pass_id, guard_id, action, overdue, scanned_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (pass_id, guard_id, decision.action, 1 if overdue else 0, scanned_at),
            )
            scan_log_id = int(cur.lastrowid)

        logger.info("Scan %s on pass %s by guard %s -> %s", decision.action, pass_id, guard_id, decision.to_status)
        if overdue:
            try:
                self.overdue_hook(current, scanned_at)
            except Exception:
                logger.exception("Overdue hook failed for pass %s", pass_id)

        return {
            "pass_id": pass_id,
            "action": decision.action,
            "status": decision.to_status,
            "overdue": overdue,
            "scan_log_id": scan_log_id,
            "scanned_at": scanned_at,
            "student_name": current["student_name"],
            "destination_type": current["destination_type"],
        }

    def list_scan_logs(self, *, limit: int, pass_id: str | None = None) -> list[dict[str, Any]]:
        where = "1=1"
        params: list[Any] = []
        if pass_id is not None:
            where = "sl.pass_id = ?"
            params.append(pass_id)
        params.append(max(1, int(limit)))

        with self._reading() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    sl.id,
                    sl.pass_id,
                    sl.guard_id,
                    sl.action,
                    sl.overdue,
                    sl.scanned_at,
                    p.destination_type,
                    p.student_id,
                    u.full_name,
                    u.roll_no,
                    u.hostel,
                    u.email,
                    u.parent_contact
                FROM scan_logs sl
                JOIN passes p ON p.id = sl.pass_id
                LEFT JOIN users u ON u.id = p.student_id
                WHERE {where}
                ORDER BY sl.scanned_at DESC, sl.id DESC
                LIMIT ?
                """,
                params,
            ).fetchall()

        return [
            {
                "id": r["id"],
                "pass_id": r["pass_id"],
                "guard_id": r["guard_id"],
                "action": r["action"],
                "overdue": bool(r["overdue"]),
                "scanned_at": r["scanned_at"],
                "destination_type": r["destination_type"],
                "student": {
                    "id": r["student_id"],
                    "full_name": r["full_name"],
                    "roll_no": r["roll_no"],
                    "hostel": r["hostel"],
                    "email": r["email"],
                    "parent_contact": r["parent_contact"],
                },
            }
            for r in rows
        ]

    # -----------------------------
    # Extension requests
    # -----------------------------
    def create_extension(
        self,
        *,
        pass_id: str,
        student_id: str,
        new_expected_return_at: datetime,
        reason: str,
    ) -> dict[str, Any]:
        target = self.get_pass(pass_id)
        if target["student_id"] != student_id:
            raise NotFound("Gatepass not found.")
        clean_reason = reason.strip()
        if not clean_reason:
            raise ValidationError("Reason is required.")

        ext_id = str(uuid.uuid4())
        now = self.now_iso()
        with self._writing() as conn:
            conn.execute(
                """
                INSERT INTO extension_requests (
                    id, pass_id, student_id, new_expected_return_at, reason,
                    status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 'PENDING', ?, ?)
                """,
                (ext_id, pass_id, student_id, to_utc_iso(new_expected_return_at), clean_reason, now, now),
            )

        logger.info("Extension %s requested on pass %s", ext_id, pass_id)
        return self.get_extension(ext_id)

    def get_extension(self, ext_id: str) -> dict[str, Any]:
        with self._reading() as conn:
            row = conn.execute("SELECT * FROM extension_requests WHERE id = ?", (ext_id,)).fetchone()
        if not row:
            raise NotFound("Extension request not found.")
        return _extension_from_row(row)

    def list_extensions(
        self,
        *,
        student_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        where = ["1=1"]
        params: list[Any] = []
        if student_id is not None:
            where.append("student_id = ?")
            params.append(student_id)
        if status is not None:
            where.append("status = ?")
            params.append(status)

        with self._reading() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM extension_requests
                WHERE {" AND ".join(where)}
                ORDER BY created_at DESC
                """,
                params,
            ).fetchall()
        return [_extension_from_row(r) for r in rows]

    def review_extension(
        self,
        ext_id: str,
        *,
        reviewer_id: str,
        role: str,
        decision: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """
        Approve or reject an extension. Approval moves the target pass's
        expected return time in the same transaction; nothing else on the pass
        changes except ``updated_at``.
        """
        current = self.get_extension(ext_id)
        new_status = decide_extension_review(current["status"], role, decision)
        now = self.now_iso()

        with self._writing() as conn:
            cur = conn.execute(
                """
                UPDATE extension_requests
                SET status = ?, reviewed_by = ?, review_notes = ?, updated_at = ?
                WHERE id = ? AND status = 'PENDING'
                """,
                (new_status, reviewer_id, notes, now, ext_id),
            )
            if cur.rowcount != 1:
                raise Conflict("Extension request was reviewed concurrently.")

            if new_status == "APPROVED":
                cur = conn.execute(
                    """
                    UPDATE passes
                    SET expected_return_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (current["new_expected_return_at"], now, current["pass_id"]),
                )
                if cur.rowcount != 1:
                    raise NotFound("Gatepass not found.")

        logger.info("Extension %s %s by %s %s", ext_id, new_status, role, reviewer_id)
        return self.get_extension(ext_id)
