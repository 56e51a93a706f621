"""Database engine & session factory."""

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from loguru import logger

from database.models import Base


def _mask_url(url: str) -> str:
    """Mask password in DB URL for safe logging."""
    if "@" in url:
        before_at, after_at = url.split("@", 1)
        if ":" in before_at.split("//", 1)[-1]:
            scheme_user = before_at.rsplit(":", 1)[0]
            return f"{scheme_user}:****@{after_at}"
    return url


def create_db_engine(database_url: str) -> Engine:
    """Build an engine with per-backend pool settings."""
    engine_kwargs: dict = {"echo": False}

    if database_url.startswith("sqlite"):
        # Report workers share the engine across threads
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
        logger.info(f"Database backend: SQLite ({database_url})")
    else:
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10
        engine_kwargs["pool_recycle"] = 300
        logger.info(f"Database backend: {_mask_url(database_url)}")

    return create_engine(database_url, **engine_kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    # Rows are converted to pydantic models after commit
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    Base.metadata.create_all(engine)
    logger.info("Database tables ready")


def check_connection(engine: Engine) -> bool:
    """Test the database connection with SELECT 1."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        return False
