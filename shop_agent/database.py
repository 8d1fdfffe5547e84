"""Database engine and session management."""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from shop_agent.config import settings
from shop_agent.core.logging_config import get_logger

logger = get_logger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600
    )


class DatabaseSession:
    """Session factory shared by the repositories."""

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        self.engine = engine or build_engine(
            database_url or settings.database_url,
            echo=settings.log_level == "DEBUG"
        )

    def create_all(self) -> None:
        # Register every table on the metadata before creating them
        import shop_agent.models  # noqa: F401

        SQLModel.metadata.create_all(self.engine)
        logger.info("Database tables created", url=str(self.engine.url))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for transactional database sessions.
        Use for write operations.
        """
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("Database transaction rolled back", error=str(e))
            raise
        finally:
            session.close()

    @contextmanager
    def read_session(self) -> Generator[Session, None, None]:
        """Context manager for read-only sessions (no commit)."""
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
        finally:
            session.close()


db = DatabaseSession()


def create_db_and_tables():
    db.create_all()
