"""Database client and base model setup."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


class Database:
    """Explicitly constructed database client shared by the stores of one process."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            if ":memory:" in url:
                # One shared connection so worker threads see the same in-memory data.
                engine_kwargs["poolclass"] = StaticPool

        self.url = url
        self.engine: Engine = create_engine(
            url,
            connect_args=connect_args,
            echo=echo,
            future=True,
            **engine_kwargs,
        )
        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )

    def create_all(self) -> None:
        """Create tables if they do not already exist."""
        # Import for the side effect of registering the mapped tables.
        from crm_ai.storage import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
