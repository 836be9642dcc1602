import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from config import settings
from .models import Base
from services.errors import AlreadyExists, TransientStoreError

logger = logging.getLogger(__name__)


def make_engine(url: str):
    """Creates an engine; SQLite connections are shared with worker threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = make_session_factory(engine)


def init_db(bind=None):
    """Initializes the database tables."""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(session_factory, conflict: str = None):
    """
    Opens a session for a single document write (or read) and commits it.

    Driver failures surface as TransientStoreError. When `conflict` is given,
    an IntegrityError is reported as AlreadyExists with that message instead.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if conflict is not None:
            raise AlreadyExists(conflict) from exc
        raise TransientStoreError("store rejected the write") from exc
    except (OperationalError, DBAPIError) as exc:
        db.rollback()
        logger.warning("Store call failed: %s", exc)
        raise TransientStoreError("store unavailable") from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
