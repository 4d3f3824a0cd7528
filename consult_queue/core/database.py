from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator, Optional
import redis
from .config import settings

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None
_redis_client = None

def make_engine(url: str) -> Engine:
    """Create an engine with pool settings suited to the database backend."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
    )

def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = make_engine(settings.get_database_url)
    return _engine

def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client

# Database initialization
def init_db(engine: Optional[Engine] = None):
    """Initialize database tables."""
    # Register table metadata
    from ..models import queue  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
