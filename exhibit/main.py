from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from exhibit import settings
from exhibit.logging_config import configure_logging
from exhibit.routers import admin, booking, experiences, gate

TORTOISE_MODULES = {"models": ["exhibit.models"]}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting exhibit bookings (db: {})", settings.db_url.split("://")[0])
    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules=TORTOISE_MODULES,
        generate_schemas=True,
        use_tz=True,
        timezone="UTC",
    ):
        yield
    logger.info("Exhibit bookings stopped")


def create_app(with_db: bool = True) -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Black Cats & Chequered Flags bookings",
        lifespan=lifespan if with_db else None,
    )
    app.include_router(experiences.router)
    app.include_router(booking.router)
    app.include_router(gate.router)
    app.include_router(admin.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
