from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from db import Database
from services import state_machine as sm
from services.errors import NotFound, StorageError
from utils.logs import get_logger

logger = get_logger(__name__)


def utcnow_iso(now: Optional[datetime] = None) -> str:
    # formato fixo: ordenação lexicográfica == ordenação temporal
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# Helpers de domínio
@dataclass(frozen=True)
class Pack:
    id: int
    name: str
    price: int  # centavos
    content: str = ""
    slug: str = ""
    description: str = ""
    image: str = ""

    def to_public_dict(self) -> Dict[str, Any]:
        # content é o que o cliente compra: nunca sai pela API pública
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "price": self.price,
            "description": self.description,
            "image": self.image,
        }


@dataclass(frozen=True)
class Order:
    id: str
    pack_id: int
    customer_name: str
    customer_email: str
    amount: int
    payment_reference: str
    status: str = sm.PENDING_PAYMENT
    payment_presentation: str = ""
    created_at: str = ""
    updated_at: str = ""
    delivered_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "packId": self.pack_id,
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "amount": self.amount,
            "status": self.status,
            "paymentReference": self.payment_reference,
            "paymentPresentation": self.payment_presentation,
            "createdAt": self.created_at,
            "deliveredAt": self.delivered_at,
        }


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    previous_status: str
    steps: List[str]

    @property
    def should_dispatch(self) -> bool:
        return self.order.status == sm.DELIVERED and self.previous_status != sm.DELIVERED


_ORDER_COLUMNS = (
    "id, pack_id, customer_name, customer_email, amount, status, payment_reference, "
    "payment_presentation, created_at, updated_at, delivered_at"
)


def _row_to_order(r) -> Order:
    return Order(
        id=r["id"],
        pack_id=int(r["pack_id"]),
        customer_name=r["customer_name"],
        customer_email=r["customer_email"],
        amount=int(r["amount"]),
        status=r["status"],
        payment_reference=r["payment_reference"],
        payment_presentation=r["payment_presentation"] or "",
        created_at=r["created_at"],
        updated_at=r["updated_at"],
        delivered_at=r["delivered_at"],
    )


def _row_to_pack(r) -> Pack:
    return Pack(
        id=int(r["id"]),
        name=r["name"],
        price=int(r["price"]),
        content=r["content"] or "",
        slug=r["slug"] or "",
        description=r["description"] or "",
        image=r["image"] or "",
    )


class _StaleStatus(Exception):
    """O status mudou entre o SELECT e o UPDATE (compare-and-set perdeu)."""


class PaymentIndex:
    """
    Índice de correlação referência de pagamento -> pedido.
    A unicidade é garantida pelo índice UNIQUE ux_orders_payment_reference.
    """

    def __init__(self, database: Database):
        self.db = database

    def lookup(self, payment_reference: str) -> str:
        with self.db.cursor() as cur:
            cur.execute(self.db.qp("SELECT id FROM orders WHERE payment_reference = ?"), (payment_reference,))
            row = cur.fetchone()
        if not row:
            raise NotFound(f"referência de pagamento desconhecida: {payment_reference}")
        return row["id"]


class OrderStore:
    """Tabela de pedidos: fonte única da verdade do status."""

    MAX_CAS_ATTEMPTS = 3

    def __init__(self, database: Database):
        self.db = database
        self.references = PaymentIndex(database)

    def insert(self, order: Order) -> Order:
        """
        Grava o pedido (linha + entrada no índice de referência) num único INSERT.
        Colisão de id/referência -> Conflict (levantado pelo cursor).
        """
        now = utcnow_iso()
        order = replace(order, status=sm.PENDING_PAYMENT, created_at=order.created_at or now, updated_at=now, delivered_at=None)
        with self.db.cursor(for_write=True) as cur:
            cur.execute(
                self.db.qp(
                    f"INSERT INTO orders ({_ORDER_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?,?,?)"
                ),
                (
                    order.id,
                    order.pack_id,
                    order.customer_name,
                    order.customer_email,
                    order.amount,
                    order.status,
                    order.payment_reference,
                    order.payment_presentation,
                    order.created_at,
                    order.updated_at,
                    order.delivered_at,
                ),
            )
        return order

    def get(self, order_id: str) -> Order:
        with self.db.cursor() as cur:
            cur.execute(self.db.qp(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?"), (order_id,))
            row = cur.fetchone()
        if not row:
            raise NotFound(f"pedido não encontrado: {order_id}")
        return _row_to_order(row)

    def get_by_reference(self, payment_reference: str) -> Order:
        return self.get(self.references.lookup(payment_reference))

    def transition(self, order_id: str, event: str) -> TransitionResult:
        """
        Aplica o evento ao pedido segurando o lock da linha.

        Duplicate / InvalidTransition sobem sem nenhuma escrita. Se o
        compare-and-set perder para outra transação, relê e replaneja: o
        perdedor cai no caminho Duplicate.
        """
        for _ in range(self.MAX_CAS_ATTEMPTS):
            try:
                return self._transition_once(order_id, event)
            except _StaleStatus:
                logger.info("[ORDERS] status de %s mudou durante a transição; relendo", order_id)
        raise StorageError(f"não foi possível aplicar {event} ao pedido {order_id}")

    def _transition_once(self, order_id: str, event: str) -> TransitionResult:
        with self.db.cursor(for_write=True) as cur:
            cur.execute(
                self.db.qp(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?" + self.db.for_update()),
                (order_id,),
            )
            row = cur.fetchone()
            if not row:
                raise NotFound(f"pedido não encontrado: {order_id}")
            current = _row_to_order(row)
            steps = sm.plan(current.status, event)
            final = steps[-1]
            now = utcnow_iso()
            delivered_at = now if final == sm.DELIVERED else None
            cur.execute(
                self.db.qp(
                    "UPDATE orders SET status = ?, delivered_at = ?, updated_at = ? "
                    "WHERE id = ? AND status = ? AND delivered_at IS NULL"
                ),
                (final, delivered_at, now, order_id, current.status),
            )
            if cur.rowcount != 1:
                raise _StaleStatus(order_id)
        updated = replace(current, status=final, delivered_at=delivered_at, updated_at=now)
        return TransitionResult(order=updated, previous_status=current.status, steps=steps)

    def list_stale_pending(self, older_than: timedelta, limit: int = 500) -> List[Order]:
        cutoff = utcnow_iso(datetime.now(timezone.utc) - older_than)
        with self.db.cursor() as cur:
            cur.execute(
                self.db.qp(
                    f"SELECT {_ORDER_COLUMNS} FROM orders WHERE status = ? AND created_at < ? "
                    "ORDER BY created_at LIMIT ?"
                ),
                (sm.PENDING_PAYMENT, cutoff, limit),
            )
            rows = cur.fetchall()
        return [_row_to_order(r) for r in rows]


# ---------------------------
# Catálogo (colaborador externo; implementação padrão em SQL)
# ---------------------------
# preços em centavos
DEFAULT_PACKS = [
    ("Pack Inicial", "pack-inicial", 1290, "Pack inicial com conteúdo básico.",
     "https://www.workupload.com/example-pack-inicial"),
    ("Pack Avançado", "pack-avancado", 2290, "Pack avançado com extras.",
     "https://www.workupload.com/example-pack-avancado"),
    ("Pack Premium", "pack-premium", 4890, "Pack premium com conteúdo completo.",
     "https://www.workupload.com/example-pack-premium"),
    ("Pack Premium Plus", "pack-premium-plus", 6390, "Pack premium plus, completo e VIP.",
     "https://www.workupload.com/example-pack-premiumplus"),
]


class SqlCatalog:
    def __init__(self, database: Database):
        self.db = database

    def get_pack(self, pack_id: int) -> Pack:
        with self.db.cursor() as cur:
            cur.execute(self.db.qp("SELECT * FROM packs WHERE id = ?"), (pack_id,))
            row = cur.fetchone()
        if not row:
            raise NotFound(f"pack não encontrado: {pack_id}")
        return _row_to_pack(row)

    def list_packs(self) -> List[Pack]:
        with self.db.cursor() as cur:
            cur.execute("SELECT * FROM packs ORDER BY price, id")
            rows = cur.fetchall()
        return [_row_to_pack(r) for r in rows]

    def seed_defaults(self) -> int:
        """
        Cria os packs iniciais se a tabela estiver vazia. Retorna quantos criou.

        Contagem e inserts na mesma transação de escrita; vários workers
        subindo juntos contra um banco novo não colidem no slug.
        """
        created = 0
        with self.db.cursor(for_write=True) as cur:
            cur.execute("SELECT COUNT(*) AS n FROM packs")
            if int(cur.fetchone()["n"]) > 0:
                return 0
            now = utcnow_iso()
            for name, slug, price, description, content in DEFAULT_PACKS:
                cur.execute(
                    self.db.qp(
                        "INSERT INTO packs (name, slug, price, description, content, image, created_at) "
                        "VALUES (?,?,?,?,?,?,?) ON CONFLICT (slug) DO NOTHING"
                    ),
                    (name, slug, price, description, content, "", now),
                )
                created += max(cur.rowcount, 0)
        if created:
            logger.info("[BOOT] %d packs iniciais criados.", created)
        return created


def init_db(database: Database, seed_packs: bool = True) -> None:
    """
    Cria as tabelas (idempotente) e, opcionalmente, os packs iniciais.
    """
    database.init_schema()
    if seed_packs:
        SqlCatalog(database).seed_defaults()
