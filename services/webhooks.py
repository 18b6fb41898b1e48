"""
Ingestão idempotente das notificações do gateway.

Fluxo: assinatura -> parse -> índice de referência -> transição (com lock
da linha) -> entrega, se a transição caiu em 'delivered'.

Respostas:
- applied:   transição aplicada (e entrega disparada, se for o caso)
- duplicate: evento já processado; 200 para o gateway parar de reenviar
- rejected:  evento fora de ordem (ex.: failed depois de paid); nada muda
- ignored:   tipo de evento que não tratamos
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from db.models import OrderStore
from payments.webhook import parse_notification
from services import state_machine as sm
from services.delivery import DeliveryDispatcher, DeliveryResult
from services.errors import Duplicate, InvalidTransition, Unauthenticated, ValidationError
from utils.logs import get_logger

logger = get_logger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
REJECTED = "rejected"
IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookOutcome:
    outcome: str
    event: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[str] = None
    delivery: Optional[DeliveryResult] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": True, "outcome": self.outcome}
        for key, value in (("event", self.event), ("orderId", self.order_id), ("status", self.status)):
            if value is not None:
                out[key] = value
        if self.delivery is not None:
            out["delivery"] = self.delivery.to_dict()
        if self.detail:
            out["detail"] = self.detail
        return out


class WebhookService:
    def __init__(self, store: OrderStore, verifier, dispatcher: DeliveryDispatcher):
        self.store = store
        self.verifier = verifier
        self.dispatcher = dispatcher

    def ingest(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        # nada é lido do banco antes da assinatura ser validada
        if not self.verifier.verify(raw_body, headers):
            logger.warning("[WEBHOOK][SECURITY] notificação com assinatura inválida descartada (%d bytes)", len(raw_body or b""))
            raise Unauthenticated("assinatura inválida")

        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            raise ValidationError("corpo do webhook não é JSON válido")
        if not isinstance(payload, dict):
            raise ValidationError("corpo do webhook deve ser um objeto JSON")

        note = parse_notification(payload)
        if note.event is None:
            # tipos desconhecidos: 200 para o gateway não reenviar para sempre
            logger.info("[WEBHOOK] evento %r ignorado (ref=%s)", note.raw_type, note.reference or "-")
            return WebhookOutcome(IGNORED, detail=note.raw_type or "sem tipo")
        if not note.reference:
            raise ValidationError("referência de pagamento ausente", field="reference")

        order_id = self.store.references.lookup(note.reference)
        return self.apply(order_id, note.event)

    def apply(self, order_id: str, event: str) -> WebhookOutcome:
        try:
            result = self.store.transition(order_id, event)
        except Duplicate as e:
            if e.status in (sm.FAILED, sm.EXPIRED):
                # pagamento capturado num pedido morto: conciliar na mão
                logger.warning("[WEBHOOK] %s para pedido %s já em %s; conciliação manual", event, order_id, e.status)
            else:
                logger.info("[WEBHOOK] pedido %s já está %s; ignorando duplicata de %s", order_id, e.status, event)
            return WebhookOutcome(DUPLICATE, event=event, order_id=order_id, status=e.status)
        except InvalidTransition as e:
            logger.warning("[WEBHOOK] %s rejeitado para pedido %s (status=%s)", event, order_id, e.status)
            return WebhookOutcome(REJECTED, event=event, order_id=order_id, status=e.status, detail=e.message)

        logger.info("[WEBHOOK] pedido %s: %s -> %s", order_id, result.previous_status, " -> ".join(result.steps))
        delivery = None
        if result.should_dispatch:
            delivery = self.dispatcher.dispatch(result.order)
        return WebhookOutcome(APPLIED, event=event, order_id=order_id, status=result.order.status, delivery=delivery)
