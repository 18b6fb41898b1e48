"""Erros de domínio da loja.

Levantados pelos serviços; o app Flask traduz para HTTP num único
errorhandler (ver app.py).
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ShopError(Exception):
    code = "error"
    http_status = 500

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": False, "error": self.code, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class ValidationError(ShopError):
    """Entrada inválida; o cliente precisa corrigir antes de reenviar."""
    code = "validation"
    http_status = 400


class NotFound(ShopError):
    """Pack, pedido ou referência de pagamento desconhecidos."""
    code = "not_found"
    http_status = 404


class Conflict(ShopError):
    """Colisão de referência na criação. Tratado internamente (regenera)."""
    code = "conflict"
    http_status = 409


class Unauthenticated(ShopError):
    """Assinatura do webhook inválida ou ausente."""
    code = "unauthenticated"
    http_status = 401


class Duplicate(ShopError):
    """Evento já aplicado: no-op idempotente, reportado como sucesso."""
    code = "duplicate"
    http_status = 200

    def __init__(self, message: str = "", status: Optional[str] = None, **details: Any):
        super().__init__(message, **details)
        self.status = status


class InvalidTransition(ShopError):
    """Combinação estado x evento fora da tabela de transições."""
    code = "invalid_transition"
    http_status = 409

    def __init__(self, message: str = "", status: Optional[str] = None, event: Optional[str] = None, **details: Any):
        super().__init__(message, **details)
        self.status = status
        self.event = event


class DeliveryFailed(ShopError):
    """Falha no transporte da entrega; nunca desfaz o estado 'delivered'."""
    code = "delivery_failed"
    http_status = 502


class StorageError(ShopError):
    """Falha transacional; nada foi commitado, é seguro repetir a chamada."""
    code = "storage_error"
    http_status = 500
