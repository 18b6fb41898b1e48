# utils/logs.py
"""
Configuração central de logging.

Uso:
    from utils.logs import get_logger
    logger = get_logger(__name__)
    logger.info("[ORDERS] pedido criado id=%s", order_id)
"""
import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _get_log_level() -> int:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _configure_root_logger() -> None:
    root = logging.getLogger()
    # Só configura se ninguém configurou antes (gunicorn, pytest etc.)
    if root.handlers:
        return
    root.setLevel(_get_log_level())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


_configure_root_logger()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
