from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy import event
from core.config import settings
import logging

Base = declarative_base()
logger = logging.getLogger("vitaclube")

def _to_async_database_url(url: str) -> str:
    if not url:
        return url
    if url.startswith("mysql+pymysql://"):
        return url.replace("mysql+pymysql://", "mysql+aiomysql://", 1)
    if url.startswith("mysql://"):
        return url.replace("mysql://", "mysql+aiomysql://", 1)
    if url.startswith("mysql+asyncmy://"):
        return url.replace("mysql+asyncmy://", "mysql+aiomysql://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url

ASYNC_DATABASE_URL = _to_async_database_url(settings.DATABASE_URL)

def _engine_options(url: str) -> dict:
    # SQLite (local runs, tests) takes neither pool sizing nor connect_timeout
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": bool(settings.DB_PRE_PING),
        "pool_recycle": int(settings.DB_POOL_RECYCLE),
        "pool_size": int(settings.DB_POOL_SIZE),
        "max_overflow": int(settings.DB_MAX_OVERFLOW),
        "pool_timeout": int(settings.DB_POOL_TIMEOUT),
        "connect_args": {"connect_timeout": int(settings.DB_CONNECT_TIMEOUT)},
    }

engine = create_async_engine(
    ASYNC_DATABASE_URL,
    future=True,
    echo=False,
    **_engine_options(ASYNC_DATABASE_URL),
)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

async def get_db_session():
    async with SessionLocal() as db:
        try:
            logger.debug("DB session dependency: opened")
            yield db
        except Exception:
            # ensure we always rollback when something goes wrong
            await db.rollback()
            raise
        finally:
            logger.debug("DB session dependency: closed")

@event.listens_for(engine.sync_engine, "connect")
def _on_connect(dbapi_connection, connection_record):
    logger.debug("DB connect: id=%s", id(connection_record))

@event.listens_for(engine.sync_engine, "checkout")
def _on_checkout(dbapi_connection, connection_record, connection_proxy):
    logger.debug("DB checkout: id=%s", id(connection_record))

@event.listens_for(engine.sync_engine, "checkin")
def _on_checkin(dbapi_connection, connection_record):
    logger.debug("DB checkin: id=%s", id(connection_record))
