import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import PersistenceError

logger = logging.getLogger(__name__)


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class AtomicWrite:
    """A group of staged writes that is committed all-or-nothing.

    Nothing staged on the handle reaches the database until ``commit()``.
    A storage failure during commit rolls back every staged change and is
    reported as ``PersistenceError``.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.closed = False

    def stage(self, *objects: object) -> None:
        if self.closed:
            raise RuntimeError("Atomic write already finished")
        self.session.add_all(objects)

    def commit(self) -> None:
        if self.closed:
            raise RuntimeError("Atomic write already finished")
        try:
            self.session.flush()
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("atomic_write: commit failed, staged writes rolled back")
            raise PersistenceError("Failed to persist ledger changes") from exc
        except Exception:
            self.session.rollback()
            logger.exception("atomic_write: commit aborted, staged writes rolled back")
            raise
        finally:
            self.closed = True

    def rollback(self) -> None:
        if self.closed:
            return
        self.session.rollback()
        self.closed = True


def begin_atomic(session: Session) -> AtomicWrite:
    return AtomicWrite(session)


@contextmanager
def atomic(session: Session) -> Iterator[AtomicWrite]:
    handle = begin_atomic(session)
    try:
        yield handle
    except SQLAlchemyError as exc:
        handle.rollback()
        logger.exception("atomic_write: storage failure while staging, rolled back")
        raise PersistenceError("Failed to persist ledger changes") from exc
    except Exception:
        handle.rollback()
        raise
    if not handle.closed:
        handle.commit()
