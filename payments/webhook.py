# payments/webhook.py
import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from services import state_machine as sm
from utils.logs import get_logger

logger = get_logger(__name__)

# Render/WSGI podem normalizar maiúsculas; tentamos várias chaves
SIGNATURE_HEADERS = ("X-Signature", "X-Webhook-Signature", "X-Sunize-Signature")

# ajuste conforme a docs do gateway
_PAID = {"PAID", "SUCCEEDED", "APPROVED", "AUTHORIZED", "CAPTURED", "CONFIRMED", "PAYMENT_CONFIRMED"}
_FAILED = {"FAILED", "DECLINED", "REFUSED", "CANCELED", "CANCELLED", "PAYMENT_FAILED"}
_EXPIRED = {"EXPIRED", "EXPIRE"}


def _read_header_any(headers: Mapping[str, str], *names: str) -> str:
    for n in names:
        v = headers.get(n) or headers.get(n.lower())
        if v:
            return v
    return ""


class HmacVerifier:
    """
    Verificação HMAC simples:
    assinatura = hex(HMAC_SHA256(secret, raw_body)), aceita com ou sem prefixo 'sha256='.

    Sem segredo configurado, só aceita quando allow_unsigned=True (dev).
    """

    def __init__(self, secret: Union[str, bytes] = b"", allow_unsigned: bool = False):
        self.secret = secret.encode() if isinstance(secret, str) else secret
        self.allow_unsigned = allow_unsigned

    def sign(self, raw_body: bytes) -> str:
        return hmac.new(self.secret, raw_body, hashlib.sha256).hexdigest()

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        if not self.secret:
            if self.allow_unsigned:
                logger.warning("[WEBHOOK][WARN] PAYMENT_WEBHOOK_SECRET não definido; aceitando para dev.")
                return True
            logger.warning("[WEBHOOK] PAYMENT_WEBHOOK_SECRET não definido; rejeitando notificação.")
            return False

        header_sig = _read_header_any(headers, *SIGNATURE_HEADERS).strip()
        if not header_sig:
            logger.warning("[WEBHOOK] Assinatura ausente.")
            return False
        if header_sig.lower().startswith("sha256="):
            header_sig = header_sig[len("sha256="):]
        return hmac.compare_digest(self.sign(raw_body).encode(), header_sig.lower().encode())


@dataclass(frozen=True)
class Notification:
    reference: str
    event: Optional[str]  # None = tipo que não tratamos
    raw_type: str


def normalize_event(raw: str) -> Optional[str]:
    """
    'payment.paid' / 'PAID' / 'payment_failed' ... -> evento da máquina de estados.
    """
    s = (raw or "").strip().upper().replace("-", "_")
    if s.startswith("PAYMENT."):
        s = s[len("PAYMENT."):]
    if s in _PAID:
        return sm.PAYMENT_CONFIRMED
    if s in _FAILED:
        return sm.PAYMENT_FAILED
    if s in _EXPIRED:
        return sm.EXPIRE
    return None


def parse_notification(payload: Dict[str, Any]) -> Notification:
    """
    Campos tolerantes (variantes comuns):
      {"type": "payment.paid", "data": {"payment_id" | "id" | "reference": ...}}
      {"reference_id" | "referenceId" | "order_id" | "ref" | "id": ..., "status" | "event": ...}
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    raw_type = (
        payload.get("type")
        or payload.get("event")
        or payload.get("status")
        or data.get("status")
        or ""
    )
    reference = (
        data.get("payment_id")
        or data.get("id")
        or data.get("reference")
        or payload.get("payment_reference")
        or payload.get("paymentReference")
        or payload.get("reference_id")
        or payload.get("referenceId")
        or payload.get("order_id")
        or payload.get("ref")
        or payload.get("id")
        or ""
    )
    return Notification(reference=str(reference).strip(), event=normalize_event(str(raw_type)), raw_type=str(raw_type))
