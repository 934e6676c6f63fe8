# phrames/services/webhook_ingest.py
"""
Cashfree ödeme webhook'ları: Received → Verified → Applied | Rejected.

- İmza `x-webhook-timestamp + ham gövde` üzerinden doğrulanır; gövde imzadan önce
  asla yeniden serialize edilmez.
- Olay kimliği yalnızca imzalı içerikten türetilir (imzasız başlıklardan değil);
  aynı olay ikinci kez gelirse ledger sayesinde `duplicate` olarak onaylanır.
- Depolama hatası sınırlı sayıda tekrar denenir, sonra 503 ile sağlayıcıya
  yeniden gönderim sinyali verilir.
"""
import asyncio
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from google.api_core import exceptions as gexc
from starlette.concurrency import run_in_threadpool

from phrames.core.crypto import verify_signature
from phrames.core.errors import BadRequest, DuplicateEvent, InvalidSignature, UpstreamUnavailable
from phrames.schemas.webhook import (
    KNOWN_TYPES,
    PAYMENT_FAILED,
    PAYMENT_REFUND,
    PAYMENT_SUCCESS,
    IngestResult,
    Outcome,
    Transition,
    WebhookEvent,
)
from phrames.services.plans import calculate_expiry, is_valid_plan_type

logger = logging.getLogger("phrames.webhooks")

RETRYABLE_STORAGE_ERRORS = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.Aborted,
    gexc.Conflict,
    gexc.InternalServerError,
    gexc.TooManyRequests,
    gexc.RetryError,
    ConnectionError,
)


def _section(data: Any, key: str) -> Dict[str, Any]:
    """İç içe nesne; beklenmeyen şekilde (liste, string, null) boş dict."""
    value = data.get(key) if isinstance(data, dict) else None
    return value if isinstance(value, dict) else {}


def _event_type(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("type")
    return value if isinstance(value, str) else None


def _order_id(event_type: Optional[str], data: Dict[str, Any]) -> Optional[str]:
    if event_type == PAYMENT_REFUND:
        return _section(data, "refund").get("order_id")
    return _section(data, "order").get("order_id")


def derive_event_id(payload: Dict[str, Any], raw_payload: bytes) -> str:
    """
    `eventId` / `event_id` varsa onu kullanır; yoksa tip + sipariş + ödeme/iade
    kimliğinden kararlı bir anahtar üretir. Hiçbiri yoksa ham gövdenin özeti.
    """
    explicit = payload.get("eventId") or payload.get("event_id")
    if explicit:
        return str(explicit)

    event_type = _event_type(payload)
    data = payload.get("data")
    order_id = _order_id(event_type, data)
    ref = _section(data, "payment").get("cf_payment_id") or _section(data, "refund").get("cf_refund_id")
    if event_type and order_id and ref:
        key = f"{event_type}:{order_id}:{ref}"
        return "derived_" + hashlib.sha256(key.encode("utf-8")).hexdigest()
    return "body_" + hashlib.sha256(raw_payload).hexdigest()


def plan_transition(event: WebhookEvent, payment: Optional[Dict[str, Any]],
                    owner: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Transition:
    """Saf fonksiyon: mevcut ödeme durumuna göre uygulanacak yamaları hesaplar."""
    now = now or datetime.now(timezone.utc)
    data = event.data

    if event.type not in KNOWN_TYPES:
        return Transition(outcome=Outcome.IGNORED, audit_event="webhook_unknown_type",
                          description=f"Unknown webhook type received: {event.type}")
    if payment is None:
        return Transition(outcome=Outcome.UNMATCHED, audit_event="webhook_error",
                          description=f"Payment record not found for order {event.order_id}")

    current = payment.get("status")

    if event.type == PAYMENT_SUCCESS:
        if current in ("success", "refunded"):
            return Transition(status=current)
        if owner and owner.get("isBlocked") is True:
            return Transition(
                status="failed",
                payment_patch={"status": "failed", "completedAt": now},
                audit_event="payment_failure",
                description=f"User is blocked, campaign not activated for order {event.order_id}",
            )
        plan_type = payment.get("planType")
        if not is_valid_plan_type(plan_type):
            logger.warning("Unknown plan type %r on order %s", plan_type, event.order_id)
        return Transition(
            status="success",
            payment_patch={
                "status": "success",
                "cashfreePaymentId": _section(data, "payment").get("cf_payment_id"),
                "completedAt": now,
                "webhookData": data,
                "webhookReceivedAt": now,
            },
            campaign_patch={
                "isActive": True,
                "status": "Active",
                "isFreeCampaign": False,
                "planType": plan_type,
                "amountPaid": payment.get("amount"),
                "paymentId": event.order_id,
                "expiresAt": calculate_expiry(plan_type, now) if plan_type else None,
                "lastPaymentAt": now,
            },
            audit_event="payment_success",
            description=f"Payment successful for order {event.order_id} - Campaign activated",
        )

    if event.type == PAYMENT_FAILED:
        if current in ("success", "refunded", "failed"):
            return Transition(status=current)
        return Transition(
            status="failed",
            payment_patch={
                "status": "failed",
                "completedAt": now,
                "failureReason": _section(data, "payment").get("payment_message") or "Unknown",
                "webhookData": data,
                "webhookReceivedAt": now,
            },
            audit_event="payment_failure",
            description=f"Payment failed for order {event.order_id}",
        )

    # PAYMENT_REFUND
    if current == "refunded":
        return Transition(status=current)
    refund = _section(data, "refund")
    return Transition(
        status="refunded",
        payment_patch={
            "status": "refunded",
            "refundedAt": now,
            "refundAmount": refund.get("refund_amount"),
            "refundId": refund.get("cf_refund_id"),
            "refundStatus": refund.get("refund_status"),
            "refundWebhookData": data,
            "refundWebhookReceivedAt": now,
        },
        campaign_patch={"isActive": False, "status": "Refunded", "refundedAt": now},
        audit_event="payment_refunded",
        description=f"Payment refunded for order {event.order_id} - Campaign deactivated",
    )


class WebhookIngestPipeline:
    def __init__(self, secret: bytes, ledger, attempts: int = 3, base_delay: float = 0.2):
        self.secret = secret
        self.ledger = ledger
        self.attempts = max(1, attempts)
        self.base_delay = base_delay

    def verify(self, raw_payload: bytes, signature: Optional[str], timestamp: Optional[str]) -> WebhookEvent:
        """Received → Verified. Başarısızlığın nedeni dışarı sızdırılmaz."""
        if not signature or not timestamp or not verify_signature(raw_payload, timestamp, signature, self.secret):
            raise InvalidSignature()

        try:
            payload = json.loads(raw_payload)
        except (ValueError, UnicodeDecodeError):
            raise BadRequest("Malformed webhook payload")
        if not isinstance(payload, dict):
            raise BadRequest("Malformed webhook payload")

        event_type = _event_type(payload)
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        order_id = _order_id(event_type, data)
        if event_type in KNOWN_TYPES and not order_id:
            raise BadRequest("No order ID in webhook payload")

        return WebhookEvent(
            event_id=derive_event_id(payload, raw_payload),
            raw_payload=raw_payload,
            signature=signature,
            timestamp=timestamp,
            verified=True,
            type=event_type,
            order_id=str(order_id) if order_id is not None else None,
            data=data,
        )

    async def apply(self, event: WebhookEvent) -> Transition:
        """Verified → Applied; aynı event_id için tek mutasyon."""
        def planner(payment, owner):
            return plan_transition(event, payment, owner)

        for attempt in range(1, self.attempts + 1):
            try:
                return await run_in_threadpool(self.ledger.apply, event, planner)
            except DuplicateEvent:
                return Transition(outcome=Outcome.DUPLICATE)
            except RETRYABLE_STORAGE_ERRORS as exc:
                if attempt == self.attempts:
                    logger.error("Webhook %s apply failed after %d attempts: %s",
                                 event.event_id, attempt, type(exc).__name__)
                    raise UpstreamUnavailable("Webhook processing failed; retry later")
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning("Retry %d/%d for webhook %s (%s), waiting %.2fs",
                               attempt, self.attempts - 1, event.event_id, type(exc).__name__, delay)
                await asyncio.sleep(delay)
        raise UpstreamUnavailable("Webhook processing failed; retry later")

    async def ingest(self, raw_payload: bytes, signature: Optional[str], timestamp: Optional[str]) -> IngestResult:
        try:
            event = self.verify(raw_payload, signature, timestamp)
        except InvalidSignature:
            logger.warning("Webhook rejected: verification failed")
            raise
        transition = await self.apply(event)
        if transition.outcome == Outcome.DUPLICATE:
            logger.info("Duplicate webhook %s acknowledged", event.event_id)
        else:
            logger.info("Webhook %s (%s, order %s) -> %s", event.event_id, event.type,
                        event.order_id, transition.outcome.value)
        return IngestResult(event_id=event.event_id, outcome=transition.outcome)
