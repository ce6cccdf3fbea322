from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

from . import config
from .exceptions import ChecklistEngineError

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL
logger.info(f"Database URL format: {DATABASE_URL.split(':', 1)[0]}")


def make_engine(url: str, echo: bool = False):
    """Create an engine; pool sizing only applies to server databases."""
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=echo,
    )


# Create SQLAlchemy engine
try:
    logger.info("Creating SQLAlchemy engine...")
    engine = make_engine(DATABASE_URL, echo=config.SQL_ECHO)
    logger.info("SQLAlchemy engine created successfully")
except Exception as e:
    logger.error(f"Failed to create SQLAlchemy engine: {str(e)}", exc_info=True)
    raise

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create base class for models
Base = declarative_base()


def init_db(bind=None):
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401  registers the tables on Base

    Base.metadata.create_all(bind=bind or engine)


def check_db_connection(db) -> bool:
    """Run a trivial query to check the database is reachable."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {str(e)}")
        return False


def get_db():
    """Get database session for a request."""
    db = SessionLocal()
    try:
        yield db
    except ChecklistEngineError:
        db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error in database session: {str(e)}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()
