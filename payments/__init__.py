# payments/__init__.py
import os
from typing import Optional


def get_payment_provider(name: Optional[str] = None):
    """
    Retorna a implementação do provedor de pagamento conforme PAYMENT_PROVIDER.
    - simulated (default; 'mock' é alias): referência provisória + QR Pix placeholder.
    """
    provider = (name or os.environ.get("PAYMENT_PROVIDER", "simulated")).strip().lower()
    if provider in ("simulated", "mock"):
        from .mock import SimulatedProvider
        return SimulatedProvider()
    raise ValueError(f"PAYMENT_PROVIDER desconhecido: {provider}")
