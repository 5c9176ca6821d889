"""Engine and session factory for the ledger database

PostgreSQL in deployment. SQLite URLs are accepted for local runs; the ledger
relies on its conditional UPDATE taking the write lock, so SQLite connections
wait on a busy database instead of failing straight away.
"""
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tlyt.core.config import settings
from tlyt.models.base import Base


def engine_options(database_url: str) -> Dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

# Balance reads after a commit must hit the database, so objects expire on commit
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Request-scoped session for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables (migrations own schema changes)"""
    import tlyt.models  # noqa: F401 - registers every model with Base.metadata
    Base.metadata.create_all(bind=engine)
