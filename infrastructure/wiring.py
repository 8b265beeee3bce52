from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from application.config import EconomyConfig, load_config
from application.leaderboard import Leaderboard
from application.ledger import AccountStore, AuditLog, Ledger
from domain.repositories import KeyValueStore
from infrastructure.audit.file_sink import FileAuditSink
from infrastructure.db.kv_store_postgres import PostgresKeyValueStore
from infrastructure.db.kv_store_sqlite import SqliteKeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class Economy:
    """The process-wide economy singletons, built once by an entry point."""

    config: EconomyConfig
    ledger: Ledger
    leaderboard: Leaderboard


def configure_logging(environ: Optional[Mapping[str, str]] = None) -> None:
    env = os.environ if environ is None else environ
    logging.basicConfig(
        level=env.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _key_value_store(env: Mapping[str, str]) -> KeyValueStore:
    database_url = env.get("DATABASE_URL")
    if database_url:
        logger.info("Using Postgres balance store")
        return PostgresKeyValueStore({"dsn": database_url})

    db_path = env.get("DB_PATH", "economy.db")
    logger.info("Using SQLite balance store at %s", db_path)
    return SqliteKeyValueStore(db_path)


def build_economy(environ: Optional[Mapping[str, str]] = None) -> Economy:
    env = os.environ if environ is None else environ
    config = load_config(env)
    store = AccountStore(_key_value_store(env))
    audit = AuditLog(FileAuditSink(env.get("TRANSACTION_LOG", "logs/transactions.log")))
    return Economy(
        config=config,
        ledger=Ledger(store, audit, config),
        leaderboard=Leaderboard(store, config),
    )
