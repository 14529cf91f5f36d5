"""Database session management"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from marketplace.models.base import Base
from marketplace.core.config import settings

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Dependency: session factory for components that open their own sessions

    The failure recorder writes through a fresh session so a broken request
    session cannot take the recovery record down with it.
    """
    return SessionLocal


def init_db():
    """Initialize database (create all tables)"""
    import marketplace.models  # noqa: F401  register every model with Base.metadata
    Base.metadata.create_all(bind=engine)
