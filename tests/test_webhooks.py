import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from phrames.core.crypto import compute_signature, digest_key
from phrames.core.errors import DuplicateEvent
from phrames.repositories import payments as payments_repo
from phrames.repositories.payments import FirestorePaymentLedger
from phrames.schemas.webhook import WebhookEvent
from phrames.services.plans import calculate_expiry
from phrames.services.webhook_ingest import derive_event_id, plan_transition

TS = "1700000000"
SECRET = b"s3cr3t"


def _body(payload) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _headers(body: bytes, secret: bytes = SECRET, ts: str = TS):
    return {
        "x-webhook-signature": compute_signature(body, ts, secret),
        "x-webhook-timestamp": ts,
        "content-type": "application/json",
    }


def _post(client, body: bytes, headers=None):
    return client.post("/payments/webhook", content=body,
                       headers=_headers(body) if headers is None else headers)


def success_event(event_id="evt_s1", order_id="order_1"):
    return {
        "eventId": event_id,
        "type": "PAYMENT_SUCCESS_WEBHOOK",
        "data": {
            "order": {"order_id": order_id, "order_amount": 99},
            "payment": {"cf_payment_id": "cfp_1", "payment_status": "SUCCESS"},
        },
    }


def failed_event(event_id="evt_f1", order_id="order_1"):
    return {
        "eventId": event_id,
        "type": "PAYMENT_FAILED_WEBHOOK",
        "data": {
            "order": {"order_id": order_id},
            "payment": {"cf_payment_id": "cfp_2", "payment_message": "Card declined"},
        },
    }


def refund_event(event_id="evt_r1", order_id="order_1"):
    return {
        "eventId": event_id,
        "type": "PAYMENT_REFUND_WEBHOOK",
        "data": {"refund": {"order_id": order_id, "cf_refund_id": "rf_1",
                            "refund_amount": 99, "refund_status": "SUCCESS"}},
    }


@pytest.fixture(autouse=True)
def seeded(fake_db):
    fake_db.put("payments", "pay1", {
        "orderId": "order_1", "campaignId": "camp1", "userId": "u1",
        "planType": "month", "amount": 99, "status": "pending",
    })
    fake_db.put("campaigns", "camp1", {"isActive": False, "status": "Draft"})
    fake_db.put("users", "u1", {"email": "u1@phrames.app"})


def _ledger(fake_db):
    return fake_db.all("webhook_events")


def test_success_applies_then_duplicate_is_noop(client, fake_db):
    body = _body(success_event())
    r = _post(client, body)
    assert r.status_code == 200
    assert r.json() == {"success": True, "event_id": "evt_s1", "outcome": "applied"}

    payment = fake_db.read("payments", "pay1")
    campaign = fake_db.read("campaigns", "camp1")
    assert payment["status"] == "success"
    assert payment["cashfreePaymentId"] == "cfp_1"
    assert campaign["isActive"] is True and campaign["status"] == "Active"
    assert campaign["expiresAt"] - campaign["lastPaymentAt"] == timedelta(days=30)
    logs_before = len(fake_db.all("logs"))

    r = _post(client, body)
    assert r.status_code == 200
    assert r.json()["outcome"] == "duplicate"
    assert fake_db.read("payments", "pay1") == payment
    assert fake_db.read("campaigns", "camp1") == campaign
    assert len(fake_db.all("logs")) == logs_before
    assert len(_ledger(fake_db)) == 1


@pytest.mark.parametrize("headers", [
    {"x-webhook-signature": "AAAA", "x-webhook-timestamp": TS},
    {"x-webhook-timestamp": TS},
    {},
])
def test_bad_signature_rejected_without_state_change(client, fake_db, headers):
    body = _body(success_event())
    r = _post(client, body, headers=headers)
    assert r.status_code == 401
    assert r.json() == {"detail": "Invalid webhook"}
    assert _ledger(fake_db) == []
    assert fake_db.read("payments", "pay1")["status"] == "pending"


def test_missing_secret_looks_like_forged_signature(make_app, settings, fake_db):
    client = TestClient(make_app(settings.model_copy(update={"cashfree_client_secret": ""})))
    body = _body(success_event())
    forged = _post(client, body, headers={"x-webhook-signature": "AAAA", "x-webhook-timestamp": TS})
    signed_with_empty = _post(client, body, headers=_headers(body, secret=b""))
    assert forged.status_code == signed_with_empty.status_code == 401
    assert forged.json() == signed_with_empty.json()
    assert _ledger(fake_db) == []


def test_reserialized_body_fails_verification(client, fake_db):
    compact = _body(success_event())
    pretty = json.dumps(success_event(), indent=2).encode("utf-8")
    r = _post(client, pretty, headers=_headers(compact))
    assert r.status_code == 401
    assert _ledger(fake_db) == []


def test_signature_bound_to_timestamp(client):
    body = _body(success_event())
    headers = _headers(body)
    headers["x-webhook-timestamp"] = "1700000001"
    assert _post(client, body, headers=headers).status_code == 401


def test_malformed_json_is_bad_request(client, fake_db):
    body = b'{"eventId": "evt_x", '
    assert _post(client, body).status_code == 400
    assert _ledger(fake_db) == []


def test_known_type_without_order_is_bad_request(client):
    body = _body({"eventId": "evt_y", "type": "PAYMENT_SUCCESS_WEBHOOK", "data": {}})
    r = _post(client, body)
    assert r.status_code == 400
    assert r.json()["detail"] == "No order ID in webhook payload"


def test_unknown_event_is_acknowledged_once(client, fake_db):
    body = b'{"eventId":"evt_1","amount":500}'
    first = _post(client, body)
    second = _post(client, body)
    assert first.json()["outcome"] == "ignored"
    assert second.json()["outcome"] == "duplicate"
    assert len(_ledger(fake_db)) == 1
    assert fake_db.read("payments", "pay1")["status"] == "pending"


def test_unmatched_order_is_recorded(client, fake_db):
    r = _post(client, _body(success_event(order_id="order_missing")))
    assert r.status_code == 200
    assert r.json()["outcome"] == "unmatched"
    assert [e["eventType"] for e in fake_db.all("logs")] == ["webhook_error"]


def test_cashfree_order_id_fallback(client, fake_db):
    fake_db.put("payments", "pay2", {"cashfreeOrderId": "cf_order_9", "campaignId": "camp1",
                                     "userId": "u1", "planType": "week", "status": "pending"})
    _post(client, _body(success_event(order_id="cf_order_9")))
    assert fake_db.read("payments", "pay2")["status"] == "success"


def test_refund_deactivates_campaign(client, fake_db):
    _post(client, _body(success_event()))
    r = _post(client, _body(refund_event()))
    assert r.json()["outcome"] == "applied"
    payment = fake_db.read("payments", "pay1")
    assert payment["status"] == "refunded"
    assert payment["refundId"] == "rf_1"
    campaign = fake_db.read("campaigns", "camp1")
    assert campaign["isActive"] is False and campaign["status"] == "Refunded"


def test_failure_after_success_does_not_downgrade(client, fake_db):
    _post(client, _body(success_event()))
    r = _post(client, _body(failed_event()))
    assert r.status_code == 200
    assert fake_db.read("payments", "pay1")["status"] == "success"
    assert fake_db.read("campaigns", "camp1")["isActive"] is True


def test_failure_on_pending_payment(client, fake_db):
    _post(client, _body(failed_event()))
    payment = fake_db.read("payments", "pay1")
    assert payment["status"] == "failed"
    assert payment["failureReason"] == "Card declined"


def test_blocked_owner_is_not_activated(client, fake_db):
    fake_db.put("users", "u1", {"isBlocked": True})
    _post(client, _body(success_event()))
    assert fake_db.read("payments", "pay1")["status"] == "failed"
    assert fake_db.read("campaigns", "camp1")["isActive"] is False


def test_missing_campaign_still_records_payment(client, fake_db):
    fake_db.docs.pop(("campaigns", "camp1"))
    r = _post(client, _body(success_event()))
    assert r.json()["outcome"] == "applied"
    assert fake_db.read("payments", "pay1")["status"] == "success"
    assert fake_db.read("campaigns", "camp1") is None


def test_concurrent_deliveries_apply_once(make_app, settings, fake_db):
    pipeline = make_app(settings).state.webhook_pipeline
    body = _body(success_event(event_id="evt_2"))
    headers = _headers(body)

    async def deliver_twice():
        return await asyncio.gather(*[
            pipeline.ingest(body, headers["x-webhook-signature"], TS) for _ in range(2)
        ])

    results = asyncio.run(deliver_twice())
    assert sorted(r.outcome.value for r in results) == ["applied", "duplicate"]
    assert len(_ledger(fake_db)) == 1
    assert [e["eventType"] for e in fake_db.all("logs")] == ["payment_success"]


def test_transient_storage_error_is_retried(client, fake_db):
    fake_db.fail_next = 1
    r = _post(client, _body(success_event()))
    assert r.status_code == 200
    assert r.json()["outcome"] == "applied"
    assert len(_ledger(fake_db)) == 1


def test_exhausted_retries_surface_as_unavailable(client, fake_db, settings):
    fake_db.fail_next = settings.webhook_apply_attempts
    r = _post(client, _body(success_event()))
    assert r.status_code == 503
    assert _ledger(fake_db) == []
    assert fake_db.read("payments", "pay1")["status"] == "pending"

    # Sağlayıcı yeniden gönderdiğinde olay bir kez uygulanır.
    assert _post(client, _body(success_event())).json()["outcome"] == "applied"


def test_event_id_ignores_unsigned_headers(client, fake_db):
    body = _body(success_event())
    headers = _headers(body)
    _post(client, body, headers=headers)
    headers["x-webhook-id"] = "another-id"
    assert _post(client, body, headers=headers).json()["outcome"] == "duplicate"


def test_derived_event_id_is_stable():
    payload = success_event()
    payload.pop("eventId")
    compact = _body(payload)
    pretty = json.dumps(payload, indent=2).encode("utf-8")
    derived = derive_event_id(payload, compact)
    assert derived.startswith("derived_")
    assert derived == derive_event_id(payload, pretty)

    other = success_event(order_id="order_2")
    other.pop("eventId")
    assert derive_event_id(other, _body(other)) != derived


def test_event_id_falls_back_to_body_digest():
    payload = {"amount": 500}
    a = derive_event_id(payload, b'{"amount":500}')
    b = derive_event_id(payload, b'{"amount": 500}')
    assert a.startswith("body_") and b.startswith("body_")
    assert a != b
    assert derive_event_id({"event_id": 42}, b"{}") == "42"


def test_plan_expiry():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert calculate_expiry("year", now) == now + timedelta(days=365)
    assert calculate_expiry("3month", now) == now + timedelta(days=90)
    assert calculate_expiry("lifetime", now) is None


@pytest.mark.parametrize("payload", [
    {"type": "SOMETHING_NEW", "data": [1, 2]},
    {"type": ["PAYMENT_SUCCESS_WEBHOOK"], "data": {}},
    {"type": "SOMETHING_NEW", "data": {"order": "o1", "payment": 7}},
])
def test_odd_shapes_of_unknown_events_are_ignored(client, fake_db, payload):
    r = _post(client, _body(payload))
    assert r.status_code == 200
    assert r.json()["outcome"] == "ignored"
    assert len(_ledger(fake_db)) == 1


@pytest.mark.parametrize("data", [
    {"order": "order_1"},
    {"order": ["order_1"]},
    [{"order": {"order_id": "order_1"}}],
])
def test_known_event_with_unusable_order_is_bad_request(client, fake_db, data):
    r = _post(client, _body({"type": "PAYMENT_SUCCESS_WEBHOOK", "data": data}))
    assert r.status_code == 400
    assert _ledger(fake_db) == []


def test_non_object_payment_section_still_applies(client, fake_db):
    payload = {"type": "PAYMENT_SUCCESS_WEBHOOK",
               "data": {"order": {"order_id": "order_1"}, "payment": "x"}}
    r = _post(client, _body(payload))
    assert r.status_code == 200
    assert r.json()["outcome"] == "applied"
    payment = fake_db.read("payments", "pay1")
    assert payment["status"] == "success"
    assert payment["cashfreePaymentId"] is None


def test_refund_with_non_object_refund_section_is_bad_request(client):
    body = _body({"type": "PAYMENT_REFUND_WEBHOOK", "data": {"refund": "rf_1"}})
    assert _post(client, body).status_code == 400


def test_ledger_written_by_concurrent_commit_is_duplicate(fake_db):
    event = WebhookEvent(event_id="evt_race", raw_payload=b"{}", signature="sig", timestamp=TS,
                         verified=True, type="PAYMENT_SUCCESS_WEBHOOK", order_id="order_1", data={})

    def planner(payment, owner):
        # Başka bir teslimat aynı olayı okuma ile commit arasında yazar.
        fake_db.put("webhook_events", digest_key("evt_race"), {"eventId": "evt_race"})
        return plan_transition(event, payment, owner)

    with pytest.raises(DuplicateEvent):
        FirestorePaymentLedger(fake_db).apply(event, planner)
    assert fake_db.read("payments", "pay1")["status"] == "pending"
    assert fake_db.all("logs") == []


def test_exhausted_transaction_attempts_surface_as_unavailable(client, fake_db, monkeypatch):
    def never_commits(fn):
        def run(transaction, *args, **kwargs):
            raise ValueError("Failed to commit transaction in 5 attempts.")
        return run

    monkeypatch.setattr(payments_repo.firestore, "transactional", never_commits)
    r = _post(client, _body(success_event()))
    assert r.status_code == 503
    assert _ledger(fake_db) == []
