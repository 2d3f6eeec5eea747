import logging
import os
import threading

from alembic.config import Config
from sqlalchemy import Connection, create_engine
from sqlalchemy.engine import Engine

from alembic import command
from leasebill.settings import settings

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_engine_lock = threading.Lock()
_local = threading.local()


def get_engine() -> Engine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = create_engine(
                settings.db_url,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
            logger.info("Database engine created")
    return _engine


def get_connection() -> Connection:
    """Return this thread's connection, opening it on first use.

    Invoice run workers each get their own connection so that one lease's
    unit of work never shares a transaction with another's.
    """
    conn = getattr(_local, "connection", None)
    if conn is None:
        conn = get_engine().connect()
        _local.connection = conn
        logger.debug("DB connection opened for thread %s", threading.current_thread().name)
    return conn


def close_connection() -> None:
    conn = getattr(_local, "connection", None)
    if conn is not None:
        conn.close()
        _local.connection = None


def _get_alembic_config() -> Config:
    """Build Alembic config pointing at the project root alembic.ini."""
    project_root = os.path.dirname(os.path.dirname(__file__))
    ini_path = os.path.join(project_root, "alembic.ini")
    if not os.path.exists(ini_path):
        ini_path = os.path.join(os.getcwd(), "alembic.ini")
    cfg = Config(ini_path)
    cfg.set_main_option("script_location", os.path.join(project_root, "alembic"))
    return cfg


def initialize_db() -> None:
    """Run all pending Alembic migrations."""
    logger.info("Running Alembic migrations")
    cfg = _get_alembic_config()
    command.upgrade(cfg, "head")
    logger.info("Migrations complete")
