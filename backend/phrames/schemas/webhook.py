"""
phrames/schemas/webhook.py
Cashfree webhook olayı, ledger sonucu ve ödeme geçişi modelleri.
"""
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

PAYMENT_SUCCESS = "PAYMENT_SUCCESS_WEBHOOK"
PAYMENT_FAILED = "PAYMENT_FAILED_WEBHOOK"
PAYMENT_REFUND = "PAYMENT_REFUND_WEBHOOK"
KNOWN_TYPES = {PAYMENT_SUCCESS, PAYMENT_FAILED, PAYMENT_REFUND}


class WebhookEvent(BaseModel):
    """Tek bir callback'in işlenmesi süresince yaşayan olay."""
    model_config = ConfigDict(frozen=True)

    event_id: str
    raw_payload: bytes = Field(..., repr=False)
    signature: str = Field(..., repr=False)
    timestamp: str
    verified: bool = False
    type: Optional[str] = None
    order_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict, repr=False)


class Outcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNMATCHED = "unmatched"


class Transition(BaseModel):
    """Bir ödeme kaydına uygulanacak yamalar; boş yama = değişiklik yok."""
    outcome: Outcome = Outcome.APPLIED
    status: Optional[str] = None
    payment_patch: Dict[str, Any] = Field(default_factory=dict)
    campaign_patch: Dict[str, Any] = Field(default_factory=dict)
    audit_event: Optional[str] = None
    description: str = ""


class IngestResult(BaseModel):
    success: bool = True
    event_id: str
    outcome: Outcome
