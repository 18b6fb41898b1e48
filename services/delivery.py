# services/delivery.py
# Entrega do conteúdo do pack depois que o pagamento é confirmado.
# Variáveis de ambiente:
#   - DELIVERY_WEBHOOK_URL   (opcional; sem ela a entrega só é registrada em log)
#   - DELIVERY_TIMEOUT_S     (opcional; padrão 10)
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from db.models import Order, Pack
from services.errors import DeliveryFailed, NotFound
from utils.logs import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    accepted: bool
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"accepted": self.accepted}
        if self.reason:
            out["reason"] = self.reason
        return out


class LogDeliverer:
    """Só registra a entrega. Útil em dev e quando o envio é manual."""

    def deliver(self, order: Order, pack: Pack) -> DeliveryResult:
        logger.info("[DELIVERY] Entrega: enviar para %s -> %s (pedido %s)", order.customer_email, pack.content, order.id)
        return DeliveryResult(accepted=True)


class HttpDeliverer:
    """
    Repassa a entrega para um serviço externo (e-mail, área de membros...)
    via POST JSON. Timeout curto: o webhook do gateway está esperando.

    Sem client injetado, cada entrega abre e fecha o próprio httpx.Client
    (uma chamada por pedido). Client injetado é de quem injetou: nunca é
    fechado aqui.
    """

    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.client = client
        self.timeout = httpx.Timeout(timeout_s, connect=min(5.0, timeout_s))
        self.transport = transport

    def deliver(self, order: Order, pack: Pack) -> DeliveryResult:
        if self.client is not None:
            return self._post(self.client, order, pack)
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            return self._post(client, order, pack)

    def _post(self, client: httpx.Client, order: Order, pack: Pack) -> DeliveryResult:
        body = {
            "orderId": order.id,
            "email": order.customer_email,
            "name": order.customer_name,
            "packId": pack.id,
            "packName": pack.name,
            "content": pack.content,
        }
        try:
            resp = client.post(self.url, json=body)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            return DeliveryResult(accepted=False, reason=f"{type(e).__name__}: {e}")
        return DeliveryResult(accepted=True)


class DeliveryDispatcher:
    """
    Chamado no máximo uma vez por pedido, depois do commit de 'delivered'.
    Falha do transporte NÃO desfaz o estado: vira log de erro para follow-up.
    """

    def __init__(self, catalog, deliverer):
        self.catalog = catalog
        self.deliverer = deliverer

    def dispatch(self, order: Order) -> DeliveryResult:
        try:
            pack = self.catalog.get_pack(order.pack_id)
            result = self.deliverer.deliver(order, pack)
            if not result.accepted:
                raise DeliveryFailed(result.reason or "entrega recusada pelo transporte")
        except (DeliveryFailed, NotFound) as e:
            return self._report(order, str(e))
        except Exception as e:  # transporte é caixa-preta
            logger.exception("[DELIVERY][ERR] erro inesperado entregando pedido %s", order.id)
            return self._report(order, f"{type(e).__name__}: {e}")
        logger.info("[DELIVERY] pedido %s entregue para %s", order.id, order.customer_email)
        return result

    def _report(self, order: Order, reason: str) -> DeliveryResult:
        logger.error(
            "[DELIVERY][FAILED] pedido=%s ref=%s email=%s motivo=%s (reenvio manual necessário)",
            order.id, order.payment_reference, order.customer_email, reason,
        )
        return DeliveryResult(accepted=False, reason=reason)
