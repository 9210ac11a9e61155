"""
Database configuration:
- pool_pre_ping=True on server databases
- SSL enforced for Supabase
- Retry on OperationalError when opening a session (max 2 retries)
- SQLite for local runs and tests, with foreign keys switched on
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
from dotenv import load_dotenv
import logging
from typing import Generator
import time

from stockroom.config import settings

load_dotenv()

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_database_url(url: str) -> str:
    """Normalize the configured URL for the psycopg 3 driver."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]

    # Add SSL mode for Supabase if not present
    if "supabase" in url and "sslmode" not in url:
        url += ("&" if "?" in url else "?") + "sslmode=require"
        logger.info("Added sslmode=require to DATABASE_URL")
    return url


def make_engine(url: str, echo: bool = False, **engine_kwargs):
    """Create an engine with the pool settings suited to the backend."""
    url = build_database_url(url)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            **engine_kwargs,
        )

        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
        pool_timeout=30,
        echo=echo,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        }
    )


engine = make_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)
logger.info(f"Database engine configured for {engine.url.get_backend_name()}")

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)


def get_db() -> Generator:
    """
    Yield a database session for one request.
    Opening the session retries OperationalError twice before giving up.
    """
    db = None
    for attempt in range(3):
        try:
            db = SessionLocal()
            db.execute(text("SELECT 1"))
            break
        except OperationalError as e:
            db.close()
            if attempt == 2:
                logger.error(f"Database connection failed after 3 attempts: {e}")
                raise
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
            time.sleep(1)

    try:
        yield db
    finally:
        # Anything left uncommitted by the request is discarded
        if db.in_transaction():
            db.rollback()
        db.close()


def test_connection() -> tuple[bool, str]:
    """Preflight connection test with retry"""
    for attempt in range(3):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True, "Database connection successful"
        except OperationalError as e:
            if attempt == 2:
                return False, f"Database connection failed: {str(e)}"
            time.sleep(1)
    return False, "Database connection test failed"


# Keep pytest from collecting the preflight helper when it is imported into tests
test_connection.__test__ = False
