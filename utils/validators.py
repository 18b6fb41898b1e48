import re
from typing import Any, Mapping, Tuple

from services.errors import ValidationError

# checagem sintática apenas; entregabilidade é problema do transporte
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]{2,}$")
MAX_NAME_LEN = 200
MAX_EMAIL_LEN = 254


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if data.get(k) is not None:
            return data.get(k)
    return None


def parse_pack_id(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValidationError("packId inválido.", field="packId")
    if isinstance(raw, int) and raw > 0:
        return raw
    if isinstance(raw, str) and raw.strip().isdigit() and int(raw.strip()) > 0:
        return int(raw.strip())
    raise ValidationError("packId inválido.", field="packId")


def is_plausible_email(email: str) -> bool:
    return len(email) <= MAX_EMAIL_LEN and bool(EMAIL_RE.match(email))


def validate_purchase(data: Mapping[str, Any]) -> Tuple[int, str, str]:
    """
    Valida {packId, customerName, customerEmail} (aceita também snake_case).
    Retorna (pack_id, nome, email normalizado).
    """
    raw_pack = _first(data, "packId", "pack_id")
    raw_name = _first(data, "customerName", "customer_name")
    raw_email = _first(data, "customerEmail", "customer_email")

    if raw_pack is None or raw_name is None or raw_email is None:
        raise ValidationError("Dados incompletos: packId, customerName e customerEmail são obrigatórios.")
    if not isinstance(raw_name, str) or not raw_name.strip():
        raise ValidationError("customerName inválido.", field="customerName")
    if not isinstance(raw_email, str) or not raw_email.strip():
        raise ValidationError("customerEmail inválido.", field="customerEmail")

    name = raw_name.strip()
    email = raw_email.strip().lower()
    if len(name) > MAX_NAME_LEN:
        raise ValidationError("customerName muito longo.", field="customerName")
    if not is_plausible_email(email):
        raise ValidationError("customerEmail inválido.", field="customerEmail")
    return parse_pack_id(raw_pack), name, email
