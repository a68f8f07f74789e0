import time
import uuid
from typing import Optional


def generate_id() -> str:
    """Return a new opaque identifier for a stored row or draft entry."""
    return uuid.uuid4().hex


def now_ms() -> int:
    """Return the current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def round_to(value: Optional[float], decimals: int = 1) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), decimals)


def escape_like(query: str) -> str:
    """Escape ``LIKE`` wildcards so ``query`` matches literally."""
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
