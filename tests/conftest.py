"""Fixtures: app com SQLite temporário, entrega gravada em memória e webhook assinado."""
import hashlib
import hmac
import json
import threading

import pytest

from app import create_app
from services.delivery import DeliveryResult

WEBHOOK_SECRET = "teste123"


class RecordingDeliverer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self._lock = threading.Lock()

    def deliver(self, order, pack):
        with self._lock:
            self.calls.append((order.id, pack.id, pack.content))
        if self.fail:
            raise ConnectionError("smtp fora do ar")
        return DeliveryResult(accepted=True)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def deliverer():
    return RecordingDeliverer()


@pytest.fixture
def make_app(db_url, deliverer):
    def _make(**kwargs):
        config = {
            "TESTING": True,
            "DATABASE_URL": db_url,
            "PAYMENT_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "WEBHOOK_ALLOW_UNSIGNED": False,
            "DELIVERY_WEBHOOK_URL": "",
        }
        config.update(kwargs.pop("config", {}))
        kwargs.setdefault("deliverer", deliverer)
        return create_app(config, **kwargs)
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["packshop"]["store"]


@pytest.fixture
def new_order(client):
    def _new(pack_id=1, name="Maria Silva", email="maria@example.com"):
        r = client.post("/orders", json={"packId": pack_id, "customerName": name, "customerEmail": email})
        assert r.status_code == 201, r.get_json()
        return r.get_json()
    return _new


@pytest.fixture
def send_webhook(app):
    def _send(payload, secret=WEBHOOK_SECRET, client=None):
        body = json.dumps(payload).encode()
        headers = {"Content-Type": "application/json"}
        if secret is not None:
            headers["X-Signature"] = sign(body, secret)
        return (client or app.test_client()).post("/webhooks/payment", data=body, headers=headers)
    return _send


@pytest.fixture
def failing_deliverer():
    return RecordingDeliverer(fail=True)


@pytest.fixture(name="sign")
def sign_fixture():
    return sign
