import json

import httpx

from db.models import Order, Pack
from services.delivery import DeliveryDispatcher, DeliveryResult, HttpDeliverer, LogDeliverer
from services.errors import NotFound

PACK = Pack(id=7, name="Pack Teste", price=1290, content="https://example.com/pack")
ORDER = Order(
    id="o-1", pack_id=7, customer_name="Maria", customer_email="maria@example.com",
    amount=1290, payment_reference="SIM-o-1", status="delivered",
)


class FakeCatalog:
    def __init__(self, packs):
        self.packs = {p.id: p for p in packs}

    def get_pack(self, pack_id):
        if pack_id not in self.packs:
            raise NotFound(f"pack não encontrado: {pack_id}")
        return self.packs[pack_id]


class Refusing:
    def deliver(self, order, pack):
        return DeliveryResult(accepted=False, reason="caixa cheia")


def test_dispatch_success():
    result = DeliveryDispatcher(FakeCatalog([PACK]), LogDeliverer()).dispatch(ORDER)
    assert result.accepted


def test_dispatch_reports_refusal():
    result = DeliveryDispatcher(FakeCatalog([PACK]), Refusing()).dispatch(ORDER)
    assert not result.accepted
    assert result.reason == "caixa cheia"


def test_dispatch_reports_missing_pack():
    result = DeliveryDispatcher(FakeCatalog([]), LogDeliverer()).dispatch(ORDER)
    assert not result.accepted
    assert "pack" in result.reason


def test_dispatch_never_raises_on_transport_error():
    class Exploding:
        def deliver(self, order, pack):
            raise RuntimeError("boom")

    result = DeliveryDispatcher(FakeCatalog([PACK]), Exploding()).dispatch(ORDER)
    assert not result.accepted
    assert "boom" in result.reason


def test_http_deliverer_posts_content():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    result = HttpDeliverer("https://delivery.test/send", client=client).deliver(ORDER, PACK)

    assert result.accepted
    assert seen == [{
        "orderId": "o-1",
        "email": "maria@example.com",
        "name": "Maria",
        "packId": 7,
        "packName": "Pack Teste",
        "content": "https://example.com/pack",
    }]


def test_http_deliverer_server_error_is_failure():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    result = HttpDeliverer("https://delivery.test/send", client=client).deliver(ORDER, PACK)
    assert not result.accepted
    assert "503" in result.reason


class ClosingTransport(httpx.MockTransport):
    def __init__(self, handler):
        super().__init__(handler)
        self.closed = 0

    def close(self):
        self.closed += 1


def test_http_deliverer_closes_its_own_client():
    transport = ClosingTransport(lambda request: httpx.Response(200))
    deliverer = HttpDeliverer("https://delivery.test/send", transport=transport)

    assert deliverer.deliver(ORDER, PACK).accepted
    assert deliverer.deliver(ORDER, PACK).accepted
    assert transport.closed == 2


def test_http_deliverer_leaves_injected_client_open():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    HttpDeliverer("https://delivery.test/send", client=client).deliver(ORDER, PACK)
    assert not client.is_closed
    client.close()
