from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from orderdesk.core.config import settings


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_recycle=1800,  # recycle connections every 30 min (avoid stale)
    connect_args={"connect_timeout": 5},
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create tables that do not exist yet (local/dev bootstrap)."""
    import orderdesk.models  # noqa: F401  register mappers
    from orderdesk.db.base import Base

    Base.metadata.create_all(bind=engine)
