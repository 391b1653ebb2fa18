"""
Database connection and session management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
import os
import logging

from hypewatch.config import config
from hypewatch.models import Base

logger = logging.getLogger(__name__)

# Database engine (lazily initialized)
_engine = None
_SessionLocal = None


def get_database_url():
    """Get and normalize the database URL"""
    url = os.getenv("DATABASE_URL", config.DATABASE_URL)
    # SQLAlchemy needs postgresql:// rather than the postgres:// some hosts hand out
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def build_engine(database_url: str):
    if "sqlite" in database_url:
        connect_args = {"check_same_thread": False}
        # In-memory databases must share one connection across sessions
        pool_kwargs = {"poolclass": StaticPool} if ":memory:" in database_url or database_url == "sqlite://" else {}
    else:
        connect_args = {}
        pool_kwargs = {
            "pool_pre_ping": True,
            "pool_size": 10,
            "max_overflow": 20,
        }

    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=os.getenv("SQL_DEBUG", "false").lower() == "true",
        **pool_kwargs
    )


def get_engine():
    """Get or create the database engine"""
    global _engine
    if _engine is None:
        _engine = build_engine(get_database_url())
    return _engine


def get_session_factory():
    """Get or create the session factory"""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def init_db(engine=None):
    """Create all tables if they don't exist"""
    logger.info("🗄️ Initializing database tables...")
    try:
        Base.metadata.create_all(bind=engine or get_engine())
        logger.info("✅ Database tables ready")
    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {e}")
        raise


@contextmanager
def get_db_session(session_factory=None):
    """Context manager for database sessions (for use outside FastAPI)"""
    SessionLocal = session_factory or get_session_factory()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
