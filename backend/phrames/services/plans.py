# phrames/services/plans.py
from datetime import datetime, timedelta, timezone
from typing import Optional

# Kampanya planlarının geçerlilik süreleri (gün). Fiyatlar checkout tarafında tutulur.
PLAN_DAYS = {
    "free": 30,
    "week": 7,
    "month": 30,
    "3month": 90,
    "6month": 180,
    "year": 365,
}


def is_valid_plan_type(plan_type: Optional[str]) -> bool:
    return plan_type in PLAN_DAYS


def calculate_expiry(plan_type: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Plan bilinmiyorsa None (süresiz değil; kampanya `expiresAt` boş kalır)."""
    days = PLAN_DAYS.get(plan_type)
    if days is None:
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(days=days)
