# payments/mock.py
import secrets
from typing import Any, Dict


class SimulatedProvider:
    """
    Provider simulado: gera a referência de pagamento localmente, sem chamar
    o gateway. A referência é provisória; o pagamento só vale quando o
    webhook confirmar.

    A referência deriva do id do pedido + parte aleatória, nunca de dados
    enviados pelo cliente.
    """
    name = "simulated"

    def start_checkout(self, order_id: str, amount: int) -> Dict[str, Any]:
        reference = f"SIM-{order_id[:12]}-{secrets.token_hex(6)}"
        return {
            "ok": True,
            "reference": reference,
            "presentation": f"pix-qrcode-placeholder://PAY:{reference}",
            "amount": amount,
        }
