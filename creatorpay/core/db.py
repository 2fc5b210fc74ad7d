from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from creatorpay.core.settings import S
from creatorpay.core.tables import Base

SessionFactory = Callable[[], Session]


def make_engine(url: str, *, echo: bool = False, **kwargs) -> Engine:
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(url, future=True, echo=echo, pool_pre_ping=True, connect_args=connect_args, **kwargs)

    if is_sqlite:
        @event.listens_for(eng, "connect")
        def sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.execute("PRAGMA busy_timeout=5000;")
            cursor.close()

    return eng


def make_session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


def init_db(eng: Optional[Engine] = None) -> None:
    Base.metadata.create_all(eng or engine)


engine = make_engine(S.database_url, echo=S.database_echo)
SessionLocal = make_session_factory(engine)
