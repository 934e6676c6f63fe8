"""
phrames/schemas/session.py
Sunucu tarafı oturum kaydı.
"""
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., repr=False, description="Opak çerez değeri")
    user_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now
