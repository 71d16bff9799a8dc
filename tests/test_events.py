import json
from decimal import Decimal

import pytest

from qfifat import events


def test_envelope_serializes_money():
    body = json.loads(events._encode("order.created", {"order_id": 7, "total": Decimal("4500.00")}))
    assert body["type"] == "order.created"
    assert body["source"] == "qfifat"
    assert body["payload"] == {"order_id": 7, "total": "4500.00"}
    assert body["occurred_at"]


def test_disabled_backend_is_silent(monkeypatch):
    monkeypatch.setenv("EVENT_BACKEND", "none")
    events.publish("order.created", {"order_id": 1})


def test_unknown_backend(monkeypatch):
    monkeypatch.setenv("EVENT_BACKEND", "carrier-pigeon")
    with pytest.raises(RuntimeError):
        events.publish("order.created", {"order_id": 1})
    # swallowed on request paths
    events.publish("order.created", {"order_id": 1}, safe=True)


def test_rabbitmq_requires_url(monkeypatch):
    monkeypatch.setenv("EVENT_BACKEND", "rabbitmq")
    monkeypatch.delenv("RABBITMQ_URL", raising=False)
    with pytest.raises(RuntimeError, match="RABBITMQ_URL"):
        events.publish("payment.verified", {"payment_id": 1})
