"""Database engine and the relational store backend.

This module configures the SQLModel/SQLAlchemy engine for the remote
relational backend and provides `build_store`, which picks the backend
once at process start: the SQL store when `DATABASE_URL` is set, the
JSON file store otherwise.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine, select

from . import models
from .config import Settings
from .errors import StoreUnavailable, ValidationFailed
from .repositories import EntityStore, JsonFileStore, _prepare_insert, _writable

logger = logging.getLogger("lessonbook.store")


def engine_options(url: str, timeout: float):
    """Return the normalized URL and engine keyword arguments for `url`.

    Connecting, waiting for a pooled connection and, on PostgreSQL, each
    statement are all bounded by `timeout` seconds.
    """
    if url.startswith("postgres://"):
        # SQLAlchemy only accepts the postgresql:// spelling
        url = url.replace("postgres://", "postgresql://", 1)
    kwargs = {"echo": False, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout}
        return url, kwargs
    connect_args = {"connect_timeout": max(1, int(timeout))}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    kwargs["connect_args"] = connect_args
    kwargs.update(pool_size=5, max_overflow=10, pool_timeout=timeout)
    return url, kwargs


def create_store_engine(url: str, timeout: float):
    """Create an engine whose waits are bounded by `timeout` (see `engine_options`)."""
    url, kwargs = engine_options(url, timeout)
    logger.info("Connecting to database: %s...", url[:20])
    return create_engine(url, **kwargs)


class SqlEntityStore(EntityStore):
    """Entity store backed by a relational database.

    Columns use the snake_case attribute names of the models; the API
    and file formats translate them to camelCase. Every call opens its
    own session; batches share one session and one commit.
    """

    def __init__(self, url: str, timeout: float = 10.0):
        self.engine = create_store_engine(url, timeout)
        self.create_tables()

    def create_tables(self):
        """Create the four tables if they do not exist yet."""
        try:
            SQLModel.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"database unreachable: {exc}") from exc

    @contextmanager
    def _session(self):
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except IntegrityError as exc:
            raise ValidationFailed.single("record", f"constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"database error: {exc}") from exc

    def get(self, model, entity_id):
        with self._session() as session:
            return session.get(model, entity_id)

    def list(self, model):
        created = getattr(model, models.CREATED_FIELD[model])
        with self._session() as session:
            return list(session.exec(select(model).order_by(created, model.id)).all())

    def insert(self, entity):
        _prepare_insert(entity)
        with self._session() as session:
            session.add(entity)
            session.commit()
            return entity

    def update(self, model, entity_id, fields):
        with self._session() as session:
            row = session.get(model, entity_id)
            if row is None:
                return None
            for key, value in _writable(model, fields).items():
                setattr(row, key, value)
            session.add(row)
            session.commit()
            return row

    def delete(self, model, entity_id):
        return self.delete_many([(model, entity_id)]) == 1

    def update_many(self, changes):
        with self._session() as session:
            rows = [(session.get(model, entity_id), model, fields) for model, entity_id, fields in changes]
            if any(row is None for row, _, _ in rows):
                return False
            for row, model, fields in rows:
                for key, value in _writable(model, fields).items():
                    setattr(row, key, value)
                session.add(row)
            session.commit()
            return True

    def delete_many(self, keys):
        removed = 0
        with self._session() as session:
            for model, entity_id in keys:
                row = session.get(model, entity_id)
                if row is None:
                    continue
                session.delete(row)
                # flush per row keeps child-before-parent order for FK checks
                session.flush()
                removed += 1
            session.commit()
        return removed

    def close(self):
        self.engine.dispose()


def build_store(settings: Settings) -> EntityStore:
    """Construct the store selected by configuration."""
    if settings.use_remote_store:
        logger.info("Using relational storage")
        return SqlEntityStore(settings.DATABASE_URL, timeout=settings.STORE_TIMEOUT_SECONDS)
    logger.info("Using JSON file storage in %s", settings.DATA_DIR)
    return JsonFileStore(settings.DATA_DIR)
