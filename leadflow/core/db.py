from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def import_models():
    # every module's tables must be registered on Base.metadata before create_all
    from leadflow.modules.agents import models as _agents  # noqa: F401
    from leadflow.modules.leads import models as _leads  # noqa: F401
    from leadflow.modules.routing import models as _routing  # noqa: F401
    from leadflow.modules.automations import models as _automations  # noqa: F401
    from leadflow.modules.stage_automations import models as _stage  # noqa: F401
    from leadflow.modules.notifications import models as _notifications  # noqa: F401
    from leadflow.modules.events import outbox as _outbox  # noqa: F401

async def init_models():
    ## In dev-only "create_all" mode, keep old behavior; otherwise, migrations own the schema.
    if settings.DB_MANAGE == "create_all":
        import_models()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
