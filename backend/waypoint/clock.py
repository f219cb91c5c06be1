from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Naive UTC now; the database stores naive UTC timestamps."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
