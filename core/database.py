from typing import Generator
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, create_engine, Session

from core.config import settings

logger = logging.getLogger(__name__)

# ============================================================
# ✅ Engine (PostgreSQL in production, SQLite for local runs)
# ============================================================
IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

# SQLite connections are shared with FastAPI's threadpool
connect_args = {"check_same_thread": False, "timeout": 30} if IS_SQLITE else {}

engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    connect_args=connect_args,
)


# ============================================================
# ✅ Schema bootstrap (lifespan / seed script)
# ============================================================
def create_db_and_tables() -> None:
    """Create every table declared in ``models.models`` that does not exist yet."""
    import models.models  # noqa: F401

    try:
        SQLModel.metadata.create_all(engine)
    except SQLAlchemyError:
        logger.exception("❌ Failed to create tables on %s", engine.url.render_as_string(hide_password=True))
        raise
    logger.info("✅ Tables ready (%d)", len(SQLModel.metadata.tables))


# ============================================================
# ✅ Dependency: one Session per request
# ============================================================
def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
