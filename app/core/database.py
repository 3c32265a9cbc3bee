import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)

# -----------------------
# Session and Base
# -----------------------
# The session factory is bound to the engine the first time get_engine() runs.
SessionLocal = sessionmaker(autocommit=False, autoflush=False)
Base = declarative_base()

_engine = None


def _safe_url(url: str) -> str:
    if settings.db_password and settings.db_password in url:
        return url.replace(settings.db_password, "****")
    return url


def get_engine():
    """
    Process-wide engine (and connection pool), created on first use and kept
    until the process exits.
    """
    global _engine
    if _engine is None:
        url = settings.sqlalchemy_database_url
        logger.info(f"Connecting to database: {_safe_url(url)}")

        if url.startswith("sqlite"):
            _engine = create_engine(
                url,
                echo=False,
                connect_args={"check_same_thread": False},
            )
        else:
            _engine = create_engine(
                url,
                echo=False,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=30,
                pool_recycle=1800,
                pool_pre_ping=True,
                connect_args={"connect_timeout": 5},
            )
        SessionLocal.configure(bind=_engine)
    return _engine


# -----------------------
# Dependency for FastAPI
# -----------------------
def get_db():
    get_engine()
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database error occurred: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()
