from typing import Any, Callable

from backend.app_logger import get_logger

logger = get_logger("alerts")

OverdueHook = Callable[[dict[str, Any], str], None]


def log_overdue_entry(pass_row: dict[str, Any], entered_at: str) -> None:
    """Default overdue hook: warn the superintendent channel (the log)."""
    logger.warning(
        "Overdue return: pass %s (student %s) expected back at %s, entered at %s",
        pass_row["id"],
        pass_row["student_id"],
        pass_row["expected_return_at"],
        entered_at,
    )
