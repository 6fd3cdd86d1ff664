"""
Database engine and session handling.

One short-lived session per repository operation; objects are returned
detached (expire_on_commit=False) so they can be read after the session
closes.
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///./frontdesk.db"


class Database:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

        engine_kwargs = {}
        if self.url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.url or self.url in ("sqlite://", "sqlite:///"):
                # Single shared connection so every session sees the same in-memory db
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True
            engine_kwargs["pool_recycle"] = 3600

        self.engine = create_engine(self.url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info(f"Database configured: {self.engine.url.render_as_string(hide_password=True)}")

    def create_all(self) -> None:
        # Import models so they register on Base.metadata
        from . import db_models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Transactional session scope.

        Usage:
            with db.session() as s:
                s.add(obj)

        Commits on success, rolls back and re-raises on error.
        """
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error, rolled back: {str(e)[:200]}")
            raise
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()
