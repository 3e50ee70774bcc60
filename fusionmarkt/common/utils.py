from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

CENT = Decimal("0.01")


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(dt: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes even for timezone=True columns
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def iso(dt: Optional[datetime]) -> Optional[str]:
    dt = as_aware(dt)
    return dt.isoformat() if dt else None


def to_money(value: Any) -> Decimal:
    """Two-place decimal, rounded half up like the gateway does."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_number(value: Any) -> Optional[float]:
    return None if value is None else float(value)
