from datetime import timedelta
from typing import Dict

from db.models import OrderStore
from services import state_machine as sm
from services.errors import Duplicate, InvalidTransition, NotFound
from utils.logs import get_logger

logger = get_logger(__name__)


def expire_stale_orders(store: OrderStore, older_than_minutes: int = 60) -> Dict[str, int]:
    """
    Expira pedidos pending_payment mais velhos que o limite.
    Se o pagamento chegar no meio da varredura, a transição perde e o pedido fica como está.
    """
    stale = store.list_stale_pending(timedelta(minutes=older_than_minutes))
    expired = skipped = 0
    for order in stale:
        try:
            store.transition(order.id, sm.EXPIRE)
            expired += 1
        except (Duplicate, InvalidTransition, NotFound) as e:
            logger.info("[EXPIRE] pedido %s não expirado: %s", order.id, e.message)
            skipped += 1
    if stale:
        logger.info("[EXPIRE] %d expirados, %d mantidos", expired, skipped)
    return {"checked": len(stale), "expired": expired, "skipped": skipped}
