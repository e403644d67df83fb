import os
import threading
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from core.config import cfg
from core.log import get_logger
from core.events import log_event, E

logger = get_logger(__name__)

DEFAULT_DB_URL = "sqlite:///data/captioncraft.db"


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite:///") or url.endswith(":memory:"):
        return
    path = url[len("sqlite:///"):]
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)


class Db:
    def __init__(self, url: str = ""):
        self.url = url or str(cfg.get("db", "") or os.getenv("DB", "") or DEFAULT_DB_URL)
        self._engine = None
        self._session_factory = None
        self._lock = threading.Lock()

    def _init(self) -> None:
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._create_engine()
                    self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        self._init()
        return self._engine

    def _create_engine(self) -> Engine:
        if self.url.startswith("sqlite"):
            _ensure_sqlite_dir(self.url)
            engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False, "timeout": 30},
                pool_pre_ping=True,
            )

            @event.listens_for(engine, "connect")
            def _sqlite_pragmas(dbapi_conn, _record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=30000")
                cursor.close()

            return engine
        return create_engine(self.url, pool_pre_ping=True, pool_size=10, max_overflow=20)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def get_session(self) -> Session:
        self._init()
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        from core.models.base import Base
        import core.models  # noqa: F401  注册全部模型

        Base.metadata.create_all(self.engine)
        log_event(logger, E.SYSTEM_DB_INIT, dialect=self.dialect_name)


DB = Db()
