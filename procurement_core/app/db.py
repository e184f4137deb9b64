import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import get_settings

logger = logging.getLogger(__name__)

DATABASE_URL = get_settings().DATABASE_URL


def enable_sqlite_savepoints(engine):
    """
    Let SQLAlchemy own BEGIN on pysqlite connections.

    pysqlite's implicit transaction handling otherwise breaks SAVEPOINT,
    which the best-effort side effects run inside.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


logger.info("Using DATABASE_URL: %s", DATABASE_URL)

# Use echo=False in production; set echo=True for debugging
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {})
if DATABASE_URL.startswith("sqlite"):
    enable_sqlite_savepoints(engine)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def create_db_and_tables(bind=None):
    from . import models  # noqa: F401  registers mappers on Base.metadata
    Base.metadata.create_all(bind=bind or engine)
