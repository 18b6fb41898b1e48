import uuid
from typing import Any, Mapping

from db.models import Order, OrderStore
from services.errors import Conflict, StorageError
from utils.logs import get_logger
from utils.validators import validate_purchase

logger = get_logger(__name__)

MAX_REFERENCE_ATTEMPTS = 5


class OrderService:
    """
    Criação de pedidos.

    O valor é copiado do pack no momento da compra e nunca mais recalculado.
    A referência de pagamento vem do provider (derivada do id do pedido),
    e a unicidade é arbitrada pelo índice UNIQUE do banco: em colisão,
    gera outra e tenta de novo.
    """

    def __init__(self, store: OrderStore, catalog, provider):
        self.store = store
        self.catalog = catalog
        self.provider = provider

    def create_order(self, data: Mapping[str, Any]) -> Order:
        pack_id, name, email = validate_purchase(data)
        pack = self.catalog.get_pack(pack_id)

        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            order_id = uuid.uuid4().hex
            checkout = self.provider.start_checkout(order_id=order_id, amount=pack.price)
            order = Order(
                id=order_id,
                pack_id=pack.id,
                customer_name=name,
                customer_email=email,
                amount=pack.price,
                payment_reference=checkout["reference"],
                payment_presentation=checkout.get("presentation", ""),
            )
            try:
                saved = self.store.insert(order)
            except Conflict:
                logger.warning(
                    "[ORDERS] colisão de referência %s (tentativa %d/%d); gerando outra.",
                    order.payment_reference, attempt, MAX_REFERENCE_ATTEMPTS,
                )
                continue
            logger.info(
                "[ORDERS] pedido %s criado: pack=%s amount=%s ref=%s",
                saved.id, pack.id, saved.amount, saved.payment_reference,
            )
            return saved

        raise StorageError("não foi possível gerar uma referência de pagamento única")

    def get_order(self, order_id: str) -> Order:
        return self.store.get(order_id)
