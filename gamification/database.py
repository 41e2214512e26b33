"""
Database engine + session factory.

Defaults to SQLite for local dev, Postgres in production. Services open one
session per operation via get_session() and close it themselves. Timestamps
are stored as naive UTC.
"""
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from gamification.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


# Some hosts inject postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # ON DELETE CASCADE on awards and entries needs this per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
    event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=10, max_overflow=10)

SessionLocal = sessionmaker(bind=engine)


def get_session():
    return SessionLocal()


def utcnow():
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
