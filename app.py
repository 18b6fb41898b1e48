from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import click
from flask import Flask, current_app, jsonify, request

# ------ DB / stores ------
from db import Database
from db.models import OrderStore, SqlCatalog, init_db

# ------ Serviços ------
from payments import get_payment_provider
from payments.webhook import HmacVerifier
from services.delivery import DeliveryDispatcher, HttpDeliverer, LogDeliverer
from services.errors import NotFound, ShopError, StorageError, ValidationError
from services.expiry import expire_stale_orders
from services.orders import OrderService
from services.webhooks import WebhookService
from utils.logs import get_logger

logger = get_logger(__name__)


# ==========================================================
# Config
# ==========================================================
def _env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _config_from_env() -> Dict[str, Any]:
    return {
        "SECRET_KEY": os.environ.get("SECRET_KEY", "dev-secret-packs"),
        "DATABASE_URL": os.environ.get("DATABASE_URL", "sqlite:///packs.db"),
        "DB_TIMEOUT_S": float(os.environ.get("DB_TIMEOUT_S", "30")),
        "INIT_DB": _env_flag("INIT_DB", "1"),
        "SEED_PACKS": _env_flag("SEED_PACKS", "1"),
        # Pagamentos / Webhook
        "PAYMENT_PROVIDER": os.environ.get("PAYMENT_PROVIDER", "simulated"),
        "PAYMENT_WEBHOOK_SECRET": os.environ.get("PAYMENT_WEBHOOK_SECRET", ""),  # vazio só em dev
        "WEBHOOK_ALLOW_UNSIGNED": _env_flag("WEBHOOK_ALLOW_UNSIGNED"),
        # Entrega
        "DELIVERY_WEBHOOK_URL": os.environ.get("DELIVERY_WEBHOOK_URL", ""),
        "DELIVERY_TIMEOUT_S": float(os.environ.get("DELIVERY_TIMEOUT_S", "10")),
        # Operação
        "ORDER_EXPIRY_MINUTES": int(os.environ.get("ORDER_EXPIRY_MINUTES", "60")),
        "SETUP_TOKEN": os.environ.get("SETUP_TOKEN", ""),
    }


# ==========================================================
# App factory
# ==========================================================
def create_app(
    test_config: Optional[Dict[str, Any]] = None,
    *,
    catalog=None,
    deliverer=None,
    provider=None,
    verifier=None,
) -> Flask:
    """
    Monta o app com os colaboradores explícitos (catálogo, entrega,
    provider, verificador de assinatura). Os testes injetam fakes aqui.
    """
    app = Flask(__name__)
    app.config.from_mapping(_config_from_env())
    if test_config:
        app.config.update(test_config)

    database = Database(app.config["DATABASE_URL"], timeout_s=app.config["DB_TIMEOUT_S"])
    if app.config["INIT_DB"]:
        # Inicializa DB / cria tabelas
        try:
            init_db(database, seed_packs=app.config["SEED_PACKS"])
            logger.info("[BOOT] DB inicializado.")
        except ShopError as e:
            logger.warning("[BOOT][WARN] init_db falhou: %s", e)

    store = OrderStore(database)
    catalog = catalog or SqlCatalog(database)
    if deliverer is None:
        if app.config["DELIVERY_WEBHOOK_URL"]:
            deliverer = HttpDeliverer(app.config["DELIVERY_WEBHOOK_URL"], timeout_s=app.config["DELIVERY_TIMEOUT_S"])
        else:
            deliverer = LogDeliverer()
    verifier = verifier or HmacVerifier(
        app.config["PAYMENT_WEBHOOK_SECRET"],
        allow_unsigned=app.config["WEBHOOK_ALLOW_UNSIGNED"],
    )
    dispatcher = DeliveryDispatcher(catalog, deliverer)

    app.extensions["packshop"] = {
        "db": database,
        "store": store,
        "catalog": catalog,
        "orders": OrderService(store, catalog, provider or get_payment_provider(app.config["PAYMENT_PROVIDER"])),
        "webhooks": WebhookService(store, verifier, dispatcher),
    }

    _register_error_handlers(app)
    _register_routes(app)
    _register_commands(app)
    return app


def _shop(name: str):
    return current_app.extensions["packshop"][name]


# ==========================================================
# Erros -> HTTP
# ==========================================================
def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ShopError)
    def _shop_error(e: ShopError):
        if isinstance(e, StorageError):
            logger.error("[HTTP] erro de armazenamento em %s %s: %s", request.method, request.path, e.message)
            # não vaza detalhes do banco para o cliente
            return jsonify({"ok": False, "error": e.code, "message": "Erro interno; tente novamente."}), e.http_status
        return jsonify(e.to_dict()), e.http_status


# ==========================================================
# Rotas
# ==========================================================
def _register_routes(app: Flask) -> None:
    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "time": datetime.now(timezone.utc).isoformat()})

    # --- Catálogo (somente leitura) ---
    @app.get("/packs")
    def list_packs():
        return jsonify([p.to_public_dict() for p in _shop("catalog").list_packs()])

    @app.get("/packs/<int:pack_id>")
    def get_pack(pack_id: int):
        return jsonify(_shop("catalog").get_pack(pack_id).to_public_dict())

    # --- Pedidos ---
    @app.post("/orders")
    def create_order():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Dados incompletos: envie um objeto JSON.")
        order = _shop("orders").create_order(data)
        return jsonify({
            "ok": True,
            "orderId": order.id,
            "paymentReference": order.payment_reference,
            "paymentPresentation": order.payment_presentation,
            "amount": order.amount,
            "status": order.status,
        }), 201

    @app.get("/orders/<order_id>")
    def get_order(order_id: str):
        return jsonify(_shop("orders").get_order(order_id).to_dict())

    # --------- Webhook do gateway ---------
    @app.post("/webhooks/payment")
    def webhook_payment():
        """
        Webhook idempotente:
        - Verifica assinatura HMAC do corpo bruto (401 se inválida).
        - Identifica o pedido pela referência de pagamento (404 se desconhecida).
        - Duplicatas e eventos fora de ordem respondem 200 sem mutação.
        """
        raw = request.get_data(cache=True, as_text=False)
        outcome = _shop("webhooks").ingest(raw, request.headers)
        return jsonify(outcome.to_dict())

    # --------- Admin: diagnosticar conexão / criar schema ---------
    @app.get("/__admin/ensure_schema")
    def admin_ensure_schema():
        token = request.args.get("token")
        if not app.config["SETUP_TOKEN"] or token != app.config["SETUP_TOKEN"]:
            return jsonify({"ok": False, "error": "Forbidden"}), 403
        init_db(_shop("db"), seed_packs=app.config["SEED_PACKS"])
        return jsonify({"ok": True})

    @app.errorhandler(404)
    def _not_found(_e):
        return jsonify(NotFound("rota não encontrada").to_dict()), 404


# ==========================================================
# CLI (flask --app app <comando>)
# ==========================================================
def _register_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    @click.option("--seed/--no-seed", default=True, help="Cria os packs iniciais se o catálogo estiver vazio.")
    def init_db_command(seed: bool):
        init_db(app.extensions["packshop"]["db"], seed_packs=seed)
        click.echo("Schema pronto.")

    @app.cli.command("expire-orders")
    @click.option("--minutes", type=int, default=None, help="Idade mínima do pedido pendente.")
    def expire_orders_command(minutes: Optional[int]):
        minutes = minutes if minutes is not None else app.config["ORDER_EXPIRY_MINUTES"]
        stats = expire_stale_orders(app.extensions["packshop"]["store"], older_than_minutes=minutes)
        click.echo(f"checados={stats['checked']} expirados={stats['expired']} mantidos={stats['skipped']}")


# ==========================================================
# Boot local
# ==========================================================
if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", "5000")), debug=True)

"""
-----------------------------------------------------------
COMO TESTAR O WEBHOOK LOCALMENTE (sem gateway)
-----------------------------------------------------------
1) PAYMENT_WEBHOOK_SECRET=teste123 flask --app app run

2) Crie um pedido:
   curl -s -X POST localhost:5000/orders -H "Content-Type: application/json" \
     -d '{"packId":1,"customerName":"Maria","customerEmail":"maria@example.com"}'
   -> guarde o paymentReference (SIM-...)

3) Simule a confirmação do gateway:
   BODY='{"type":"payment.paid","data":{"payment_id":"SIM-..."}}'
   SIG=$(printf '%s' "$BODY" | openssl dgst -sha256 -hmac teste123 | awk '{print $2}')
   curl -i -X POST localhost:5000/webhooks/payment \
     -H "Content-Type: application/json" -H "X-Signature: $SIG" --data "$BODY"

4) Reenvie o mesmo corpo: responde 200 com outcome=duplicate e não entrega de novo.
"""
