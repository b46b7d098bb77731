"""
Database configuration and session management with dual database support.
Supports SQLite (default) and PostgreSQL (optional override).
"""
import logging
import os

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from app.core.config import settings, PROJECT_ROOT
from app.core.logging_config import _sanitize_data
from app.middleware.request_logging import request_id_ctx, request_path_ctx

logger = logging.getLogger(__name__)

# Get effective database URL and type
database_url = settings.effective_database_url
database_type = settings.database_type

safe_database_url = _sanitize_data(database_url)
logger.info(f"Using {database_type} database: {safe_database_url}")


def build_engine(url: str) -> Engine:
    """Create an engine with dialect-specific settings."""
    parsed = make_url(url)
    if parsed.drivername.startswith("sqlite"):
        is_sqlite_memory = parsed.database in (None, "", ":memory:")
        engine_kwargs = {
            "echo": False,
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }
        if is_sqlite_memory:
            engine_kwargs["poolclass"] = StaticPool

        sqlite_engine = create_engine(url, **engine_kwargs)
        logger.info(f"Configured SQLite engine ({'in-memory' if is_sqlite_memory else 'file-based'})")

        @event.listens_for(sqlite_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Set SQLite-specific pragma settings for optimal performance."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not is_sqlite_memory:
                cursor.execute("PRAGMA journal_mode=WAL")  # Better concurrency
                cursor.execute("PRAGMA synchronous=NORMAL")  # Balance safety/performance
            cursor.execute("PRAGMA temp_store=MEMORY")
            cursor.close()

        return sqlite_engine

    if parsed.drivername.startswith("postgres"):
        # PostgreSQL-specific optimizations
        pg_engine = create_engine(
            url,
            echo=False,
            pool_pre_ping=True,
            pool_size=20,
            max_overflow=10,
            pool_recycle=3600,  # Recycle connections every hour
        )
        logger.info("Configured PostgreSQL engine with connection pooling")
        return pg_engine

    logger.warning(
        f"Using unsupported database type '{parsed.drivername}'. "
        "Install the appropriate DB driver for production use."
    )
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = build_engine(database_url)


def create_db_and_tables():
    """Create database tables using Alembic migrations."""
    # Migrations run by the entrypoint by default; set SKIP_DB_INIT=false to run them here
    skip_db_init = os.getenv("SKIP_DB_INIT", "true").lower() in ("true", "1", "yes")
    if skip_db_init:
        logger.info("Skipping Alembic migrations (SKIP_DB_INIT enabled); ensuring tables exist")
        SQLModel.metadata.create_all(engine)
        return

    try:
        logger.info("Running database migrations...")
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
        alembic_cfg.set_main_option("sqlalchemy.url", database_url)
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")

    except Exception as exc:
        logger.error(exc)
        # Fallback to SQLModel create_all
        try:
            logger.info("Falling back to SQLModel create_all...")
            SQLModel.metadata.create_all(engine)
            logger.info("Database tables created successfully (fallback)")
        except Exception as e:
            logger.error(e)
            raise


def init_db():
    """Initialize database."""
    # Import models so their tables are registered on the metadata
    import app.models  # noqa: F401

    create_db_and_tables()


def get_session():
    """Get database session."""
    with Session(engine) as session:
        yield session


def _should_log_sql_requests() -> bool:
    return settings.log_sql_requests


@event.listens_for(engine, "before_cursor_execute")
def _log_sql_statement(conn, cursor, statement, parameters, context, executemany):
    if not _should_log_sql_requests():
        return
    compact = " ".join(statement.split())
    if len(compact) > 800:
        compact = f"{compact[:800]}..."
    logger.info(
        "SQL statement path=%s request_id=%s",
        request_path_ctx.get(),
        request_id_ctx.get(),
        extra={
            "request_id": request_id_ctx.get(),
            "path": request_path_ctx.get(),
            "statement": compact,
        },
    )


def get_session_context():
    """
    Get database session as context manager.

    Use this for background tasks and non-request contexts.

    Example:
        with get_session_context() as session:
            # use session
            pass
    """
    return Session(engine)
