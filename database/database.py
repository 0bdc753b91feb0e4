# LibraryGate - async database setup
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker

from config import get_settings
from .models import Base


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let the SQLAlchemy transaction own BEGIN so SAVEPOINTs nest inside it.

    The sqlite driver otherwise defers BEGIN until the first write, which turns
    a SAVEPOINT issued after plain SELECTs into its own outer transaction.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _no_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(database_url: str) -> AsyncEngine:
    new_engine = create_async_engine(database_url, echo=False)
    if new_engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(new_engine)
    return new_engine


engine = make_engine(get_settings().database_url)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(database_url: str | None = None):
    global engine, async_session
    if database_url and database_url != str(engine.url):
        await engine.dispose()
        engine = make_engine(database_url)
        async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db():
    await engine.dispose()
