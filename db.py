# db.py

#============================================================#
#                    Supplier Compliance                     #
#============================================================#
# Author      : Aktham Almomani                              #
# Created     : 2025-10-15                                   #
# Version     : V2.0.0                                       #
#------------------------------------------------------------#
# Purpose     : Tracks supplier task compliance per project. #
#               Project templates fan out to per-supplier    #
#               instances (SQLite/Postgres powered)          #
#                                                            #
# Change Log  :                                              #
#  - V1.0.0 (2025-10-15): Initial release.                   #
#  - V2.0.0             : Template/instance sync engine.     #
#============================================================#


from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

# ---- Config ----
DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///compliance.db"
SQL_ECHO = os.getenv("SQL_ECHO", "").strip().lower() in ("1", "true", "yes")


def _wire_sqlite(engine: Engine, enforce_foreign_keys: bool = True) -> None:
    # pysqlite defers BEGIN on its own; take it over so SAVEPOINTs nest properly
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = %s;" % ("ON" if enforce_foreign_keys else "OFF"))
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(url: Optional[str] = None, enforce_foreign_keys: bool = True, **kwargs) -> Engine:
    url = url or DATABASE_URL
    kwargs.setdefault("echo", SQL_ECHO)
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        _wire_sqlite(engine, enforce_foreign_keys)
    return engine


# ---- Engine / Session ----
engine = make_engine()


def init_db(bind: Optional[Engine] = None) -> None:
    import models  # noqa: F401  registers the tables on SQLModel.metadata
    SQLModel.metadata.create_all(bind or engine)


def get_session(bind: Optional[Engine] = None) -> Session:
    return Session(bind or engine, expire_on_commit=False)


@contextmanager
def get_repository(bind: Optional[Engine] = None) -> Iterator["ComplianceRepository"]:
    """Yield a repository over a fresh session; the session closes on exit."""
    from services.repository import ComplianceRepository

    with get_session(bind) as s:
        yield ComplianceRepository(s)
