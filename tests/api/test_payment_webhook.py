from __future__ import annotations

from types import SimpleNamespace

from fastapi.testclient import TestClient

from app.api.routes import payment_webhook
from app.main import app

SECRET_HEADERS = {"X-Payment-Webhook-Secret": "secret-token"}
CHECKOUT_ENVELOPE = {
    "id": "evt_checkout_1",
    "type": "checkout.session.completed",
    "created": 1_773_144_000,
    "data": {
        "object": {
            "id": "cs_test_1",
            "customer": "cus_1",
            "customer_email": "reader@example.com",
            "metadata": {"plan": "monthly", "promo_code": "paperclip"},
        }
    },
}


class StubTask:
    def __init__(self) -> None:
        self.calls: list[dict[str, object]] = []

    def delay(self, **kwargs: object) -> None:
        self.calls.append(kwargs)


class FailingTask:
    def delay(self, **kwargs: object) -> None:
        raise ConnectionError("broker down")


def _patch(monkeypatch, task: object) -> None:
    monkeypatch.setattr(
        payment_webhook,
        "get_settings",
        lambda: SimpleNamespace(
            payment_webhook_secret="secret-token",
            payment_webhook_enqueue_timeout_ms=250,
        ),
    )
    monkeypatch.setattr(payment_webhook, "process_payment_event", task)


def test_webhook_enqueues_normalized_event(monkeypatch) -> None:
    stub_task = StubTask()
    _patch(monkeypatch, stub_task)

    client = TestClient(app)
    response = client.post("/webhook/payments", json=CHECKOUT_ENVELOPE, headers=SECRET_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"status": "queued"}
    assert len(stub_task.calls) == 1
    payload = stub_task.calls[0]["event_payload"]
    assert payload["event_id"] == "evt_checkout_1"
    assert payload["event_kind"] == "CHECKOUT_COMPLETED"
    assert payload["promo_code"] == "PAPERCLIP"
    assert payload["email_hint"] == "reader@example.com"


def test_webhook_ignores_invalid_secret(monkeypatch) -> None:
    stub_task = StubTask()
    _patch(monkeypatch, stub_task)

    client = TestClient(app)
    response = client.post(
        "/webhook/payments",
        json=CHECKOUT_ENVELOPE,
        headers={"X-Payment-Webhook-Secret": "wrong-secret"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    assert stub_task.calls == []


def test_webhook_ignores_invalid_json(monkeypatch) -> None:
    stub_task = StubTask()
    _patch(monkeypatch, stub_task)

    client = TestClient(app)
    response = client.post(
        "/webhook/payments",
        content='{"id": "evt_1"',
        headers={"Content-Type": "application/json", **SECRET_HEADERS},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    assert stub_task.calls == []


def test_webhook_ignores_unsupported_and_malformed_events(monkeypatch) -> None:
    stub_task = StubTask()
    _patch(monkeypatch, stub_task)

    client = TestClient(app)
    unsupported = client.post(
        "/webhook/payments",
        json={"id": "evt_2", "type": "invoice.paid", "data": {"object": {}}},
        headers=SECRET_HEADERS,
    )
    malformed = client.post(
        "/webhook/payments",
        json={"id": "evt_3", "type": "customer.subscription.updated", "data": {"object": {}}},
        headers=SECRET_HEADERS,
    )

    assert unsupported.json() == {"status": "ignored"}
    assert malformed.status_code == 200
    assert malformed.json() == {"status": "ignored"}
    assert stub_task.calls == []


def test_webhook_returns_503_when_enqueue_fails(monkeypatch) -> None:
    _patch(monkeypatch, FailingTask())

    client = TestClient(app)
    response = client.post("/webhook/payments", json=CHECKOUT_ENVELOPE, headers=SECRET_HEADERS)

    assert response.status_code == 503
    assert response.json() == {"status": "retry"}
