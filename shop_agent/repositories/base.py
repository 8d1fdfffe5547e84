"""Base repository with shared session handling and error translation."""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from shop_agent.core.exceptions import PersistenceError
from shop_agent.core.logging_config import get_logger
from shop_agent.database import DatabaseSession, db as default_db

logger = get_logger(__name__)


class BaseRepository:
    """
    Repositories wrap one record family each.

    Every SQLAlchemy failure is re-raised as ``PersistenceError`` so that the
    service layer only ever sees the agent's own taxonomy.
    """

    def __init__(self, db_session: Optional[DatabaseSession] = None):
        self.db = db_session or default_db

    @contextmanager
    def _write(self, operation: str) -> Generator[Session, None, None]:
        try:
            with self.db.session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Repository write failed", repo=type(self).__name__, operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e.__class__.__name__}", operation=operation) from e

    @contextmanager
    def _read(self, operation: str) -> Generator[Session, None, None]:
        try:
            with self.db.read_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Repository read failed", repo=type(self).__name__, operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e.__class__.__name__}", operation=operation) from e
