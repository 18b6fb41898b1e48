# db/__init__.py
import os
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from services.errors import Conflict, ShopError, StorageError

DEFAULT_DATABASE_URL = "sqlite:///packs.db"


def _ensure_sqlite_path(url: str) -> str:
    # Aceita: sqlite:///arquivo.db | sqlite:////abs/arquivo.db | arquivo.db
    if url.startswith("sqlite:////"):
        return url.replace("sqlite:////", "/", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "", 1)
    return url


def _is_unique_violation(exc: BaseException) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE" in str(exc).upper()
    # psycopg: UniqueViolation
    return getattr(exc, "sqlstate", None) == "23505"


def _is_database_error(exc: BaseException) -> bool:
    if isinstance(exc, sqlite3.Error):
        return True
    return type(exc).__module__.split(".")[0] == "psycopg"


class Database:
    """
    Handle explícito do banco (psycopg | sqlite), passado para cada store.
    Cada cursor() abre a própria conexão, então o handle pode ser
    compartilhado entre threads.
    """

    def __init__(self, url: Optional[str] = None, timeout_s: float = 30.0):
        self.url = (url or os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)).strip()
        self.timeout_s = timeout_s

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgres://", "postgresql://"))

    def qp(self, sql: str) -> str:
        """
        Converte placeholders estilo SQLite ('?') para Postgres ('%s') quando necessário.
        """
        if self.is_postgres:
            return sql.replace("?", "%s")
        return sql

    def for_update(self) -> str:
        # sqlite não tem lock de linha; o BEGIN IMMEDIATE já segura o lock de escrita
        return " FOR UPDATE" if self.is_postgres else ""

    def connect(self):
        """
        Retorna uma conexão aberta (psycopg ou sqlite3).
        Commit/rollback ficam a cargo de cursor().
        """
        if self.is_postgres:
            import psycopg
            from psycopg.rows import dict_row

            timeout_ms = int(self.timeout_s * 1000)
            return psycopg.connect(
                self.url,
                row_factory=dict_row,
                connect_timeout=max(1, int(self.timeout_s)),
                options=f"-c lock_timeout={timeout_ms} -c statement_timeout={timeout_ms}",
            )

        path = _ensure_sqlite_path(self.url)
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, timeout=self.timeout_s, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    @contextmanager
    def cursor(self, for_write: bool = False) -> Iterator[Any]:
        """
        Abre conexão + cursor numa transação explícita; commit no fim do bloco,
        rollback em qualquer exceção.

        for_write=True no sqlite usa BEGIN IMMEDIATE: duas transações de escrita
        nunca leem o mesmo estado antes de gravar.
        """
        try:
            conn = self.connect()
        except Exception as e:
            if _is_database_error(e):
                raise StorageError(f"falha ao conectar no banco: {e}") from e
            raise
        cur = None
        try:
            cur = conn.cursor()
            if not self.is_postgres:
                conn.execute("BEGIN IMMEDIATE" if for_write else "BEGIN")
            # psycopg já inicia transação na primeira operação
            yield cur
            conn.commit()
        except ShopError:
            conn.rollback()
            raise
        except Exception as e:
            conn.rollback()
            if _is_unique_violation(e):
                raise Conflict(str(e)) from e
            if _is_database_error(e):
                raise StorageError(str(e)) from e
            raise
        finally:
            if cur is not None:
                cur.close()
            conn.close()

    # ---------------------------
    # DDL
    # ---------------------------
    def _adapt_ddl(self, sql: str) -> str:
        if self.is_postgres:
            return sql
        return re.sub(r"\bSERIAL\b", "INTEGER", sql, flags=re.I)

    def init_schema(self) -> None:
        """
        Cria as tabelas se não existirem. Idempotente.
        """
        with self.cursor(for_write=True) as cur:
            for stmt in DDL_STATEMENTS:
                cur.execute(self._adapt_ddl(stmt))


DDL_STATEMENTS = [
    # packs (catálogo; leitura na maior parte do tempo)
    """
    CREATE TABLE IF NOT EXISTS packs (
        id          SERIAL PRIMARY KEY,
        name        TEXT NOT NULL,
        slug        TEXT UNIQUE NOT NULL,
        price       INTEGER NOT NULL,
        description TEXT,
        content     TEXT,
        image       TEXT,
        created_at  TEXT NOT NULL
    )
    """,
    # orders: amount é cópia do preço no momento da compra
    """
    CREATE TABLE IF NOT EXISTS orders (
        id                   TEXT PRIMARY KEY,
        pack_id              INTEGER NOT NULL,
        customer_name        TEXT NOT NULL,
        customer_email       TEXT NOT NULL,
        amount               INTEGER NOT NULL,
        status               TEXT NOT NULL DEFAULT 'pending_payment',
        payment_reference    TEXT NOT NULL,
        payment_presentation TEXT,
        created_at           TEXT NOT NULL,
        updated_at           TEXT NOT NULL,
        delivered_at         TEXT,
        CHECK (status IN ('pending_payment', 'paid', 'delivered', 'expired', 'failed')),
        CHECK ((status = 'delivered') = (delivered_at IS NOT NULL))
    )
    """,
    # índice de correlação: uma referência de pagamento -> no máximo um pedido
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_orders_payment_reference
        ON orders (payment_reference)
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_orders_status_created
        ON orders (status, created_at)
    """,
]
