"""
Máquina de estados do pedido.

    pending_payment --payment_confirmed--> paid --ready_to_deliver--> delivered
    pending_payment --payment_failed-----> failed
    pending_payment --expire-------------> expired

Lógica pura: não toca no banco. O OrderStore aplica o plano dentro de
uma transação com lock da linha.
"""
from __future__ import annotations

from typing import Dict, List, Tuple

from services.errors import Duplicate, InvalidTransition

PENDING_PAYMENT = "pending_payment"
PAID = "paid"
DELIVERED = "delivered"
EXPIRED = "expired"
FAILED = "failed"

STATUSES = (PENDING_PAYMENT, PAID, DELIVERED, EXPIRED, FAILED)
TERMINAL_STATUSES = frozenset({DELIVERED, EXPIRED, FAILED})

# Eventos
PAYMENT_CONFIRMED = "payment_confirmed"
PAYMENT_FAILED = "payment_failed"
EXPIRE = "expire"
READY_TO_DELIVER = "ready_to_deliver"  # interno, nunca vem do gateway

EXTERNAL_EVENTS = frozenset({PAYMENT_CONFIRMED, PAYMENT_FAILED, EXPIRE})

TRANSITIONS: Dict[Tuple[str, str], str] = {
    (PENDING_PAYMENT, PAYMENT_CONFIRMED): PAID,
    (PAID, READY_TO_DELIVER): DELIVERED,
    (PENDING_PAYMENT, PAYMENT_FAILED): FAILED,
    (PENDING_PAYMENT, EXPIRE): EXPIRED,
}

# Ao chegar em 'paid' o pedido segue para 'delivered' na mesma transação.
FOLLOW_UPS: Dict[str, str] = {
    PAID: READY_TO_DELIVER,
}


def is_duplicate(status: str, event: str) -> bool:
    if status == DELIVERED:
        return True
    return event == PAYMENT_CONFIRMED and status in (PAID, EXPIRED, FAILED)


def next_status(status: str, event: str) -> str:
    """
    Próximo estado para (status, event).

    Levanta Duplicate para reentregas de um evento já aplicado e
    InvalidTransition para qualquer outra combinação fora da tabela.
    """
    if status not in STATUSES:
        raise InvalidTransition(f"status desconhecido: {status}", status=status, event=event)
    nxt = TRANSITIONS.get((status, event))
    if nxt is not None:
        return nxt
    if is_duplicate(status, event):
        raise Duplicate(f"evento {event} já processado (status={status})", status=status)
    raise InvalidTransition(f"transição inválida: {status} --{event}-->", status=status, event=event)


def plan(status: str, event: str) -> List[str]:
    """
    Sequência de estados que o evento produz, incluindo os follow-ups
    internos. Ex.: pending_payment + payment_confirmed -> [paid, delivered].
    """
    steps = [next_status(status, event)]
    while steps[-1] in FOLLOW_UPS:
        steps.append(next_status(steps[-1], FOLLOW_UPS[steps[-1]]))
    return steps
