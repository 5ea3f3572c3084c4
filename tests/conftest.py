"""
Shared pytest setup.

Settings are read once at import time, so the environment is pinned before
any ``legiswatch`` module is imported.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["ENV"] = "test"
os.environ["API_AUTH_KEY"] = "test-admin-key"
os.environ["CRON_SECRET"] = "test-cron-secret"

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from legiswatch.core.db import Base
from legiswatch.models import (  # noqa: F401  (register tables on Base.metadata)
    legislation_source,
    normalized_update,
    raw_legislation_item,
    release_batch,
    source_run,
    template,
    template_review_queue,
    template_topic_routing,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite only supports SAVEPOINT when SQLAlchemy owns BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """
    Sessions share one in-memory connection; tests open them with ``with``
    so each is closed before the engine under test starts its own.
    """
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)
