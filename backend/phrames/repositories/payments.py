# phrames/repositories/payments.py
"""
Webhook ledger + ödeme/kampanya güncellemesi tek Firestore transaction'ında.

Akış (hepsi aynı transaction içinde):
1. `webhook_events/{sha256(event_id)}` okunur; varsa `DuplicateEvent`.
2. Ödeme kaydı `orderId`, yoksa `cashfreeOrderId` ile bulunur; sahibi ve kampanyası okunur.
3. `plan(payment, owner)` saf fonksiyonu yamaları hesaplar.
4. Yamalar, ledger kaydı (`create`) ve audit log yazılır.

İki eşzamanlı teslimat aynı ledger dokümanını okuyup yazmaya çalışırsa Firestore
birini yeniden dener; tekrar denemede ledger dokümanı görülür ve `DuplicateEvent` döner.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from firebase_admin import firestore
from google.api_core.exceptions import Aborted, AlreadyExists
from google.cloud.firestore_v1.base_query import FieldFilter

from phrames.core.crypto import digest_key
from phrames.core.errors import DuplicateEvent
from phrames.repositories.audit import audit_entry
from phrames.schemas.webhook import Transition, WebhookEvent

logger = logging.getLogger("phrames.webhooks")

LEDGER_COL = "webhook_events"
PAYMENTS_COL = "payments"
CAMPAIGNS_COL = "campaigns"
USERS_COL = "users"
TX_EXHAUSTED_PREFIX = "Failed to commit transaction"

Planner = Callable[[Optional[Dict[str, Any]], Optional[Dict[str, Any]]], Transition]


def ledger_entry(event: WebhookEvent, transition: Transition) -> Dict[str, Any]:
    return {
        "eventId": event.event_id,
        "type": event.type,
        "orderId": event.order_id,
        "outcome": transition.outcome.value,
        "status": transition.status,
        "signatureTimestamp": event.timestamp,
        "processedAt": datetime.now(timezone.utc),
    }


class FirestorePaymentLedger:
    def __init__(self, db):
        self._db = db

    def _find_payment(self, transaction, order_id: str):
        for field in ("orderId", "cashfreeOrderId"):
            q = (self._db.collection(PAYMENTS_COL)
                 .where(filter=FieldFilter(field, "==", order_id))
                 .limit(1))
            docs = q.get(transaction=transaction)
            if docs:
                return docs[0]
        return None

    def apply(self, event: WebhookEvent, plan: Planner) -> Transition:
        ledger_ref = self._db.collection(LEDGER_COL).document(digest_key(event.event_id))

        @firestore.transactional
        def _apply(transaction) -> Transition:
            # Firestore transaction'larında tüm okumalar yazmalardan önce yapılmalı.
            if ledger_ref.get(transaction=transaction).exists:
                raise DuplicateEvent(event.event_id)

            payment_doc = self._find_payment(transaction, event.order_id) if event.order_id else None
            payment = owner = None
            campaign_ref = None
            campaign_exists = False
            if payment_doc is not None:
                payment = {**(payment_doc.to_dict() or {}), "id": payment_doc.id}
                if payment.get("userId"):
                    owner_doc = self._db.collection(USERS_COL).document(payment["userId"]).get(
                        transaction=transaction)
                    owner = owner_doc.to_dict() if owner_doc.exists else None
                if payment.get("campaignId"):
                    campaign_ref = self._db.collection(CAMPAIGNS_COL).document(payment["campaignId"])
                    campaign_exists = campaign_ref.get(transaction=transaction).exists

            transition = plan(payment, owner)

            if payment_doc is not None and transition.payment_patch:
                transaction.update(payment_doc.reference, transition.payment_patch)
            if transition.campaign_patch:
                if campaign_exists:
                    transaction.update(campaign_ref, transition.campaign_patch)
                else:
                    logger.warning("Campaign missing for order %s; campaign patch skipped", event.order_id)
            transaction.create(ledger_ref, ledger_entry(event, transition))
            if transition.audit_event:
                transaction.create(
                    self._db.collection("logs").document(),
                    audit_entry(transition.audit_event, transition.description, {
                        "orderId": event.order_id,
                        "eventId": event.event_id,
                        "userId": (payment or {}).get("userId"),
                        "campaignId": (payment or {}).get("campaignId"),
                        "amount": (payment or {}).get("amount"),
                        "planType": (payment or {}).get("planType"),
                    }),
                )
            return transition

        try:
            return _apply(self._db.transaction())
        except AlreadyExists:
            # Eşzamanlı teslimat ledger dokümanını commit anında yazmış.
            raise DuplicateEvent(event.event_id)
        except ValueError as exc:
            # firestore.transactional deneme hakkı bitince ValueError fırlatır.
            if str(exc).startswith(TX_EXHAUSTED_PREFIX):
                raise Aborted(str(exc))
            raise
