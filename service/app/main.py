import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.api import root_router
from app.configs import configs
from app.core.logger import LOGGING_CONFIG
from app.infra.database import async_engine, create_db_and_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Create database tables
    await create_db_and_tables()

    # Surface VAPID misconfiguration at boot rather than on the first push
    from app.core.webpush import ensure_vapid_keys

    ensure_vapid_keys(configs.Push)

    yield

    await async_engine.dispose()


app = FastAPI(
    title="FORFEIT Push Service",
    description="Encrypted Web Push delivery (VAPID + aes128gcm) for FORFEIT notifications",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/forfeit/api/docs",
    redoc_url="/forfeit/api/redoc",
    openapi_url="/forfeit/api/openapi.json",
    redirect_slashes=False,
)

app.include_router(root_router)


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=configs.Host,
        port=configs.Port,
        log_config=LOGGING_CONFIG,
        reload=configs.Debug,
        reload_excludes=["tests"],
    )
