"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from onebox.application.sync.manager import SyncManager
from onebox.infrastructure import get_settings
from onebox.infrastructure.event_bus import EventBus
from onebox.infrastructure.log_config import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sync engine on startup, stop every supervisor on shutdown."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    services = None
    if getattr(app.state, "manager", None) is None:
        from onebox.infrastructure.wiring import build_services

        services = await asyncio.to_thread(build_services, settings)
        app.state.services = services
        app.state.manager = services.manager
        app.state.events = services.events

    await app.state.manager.start_all()

    yield

    # Cleanup on shutdown
    logger.info("Shutting down...")
    if services is not None:
        await services.aclose()
    else:
        await app.state.manager.stop_all()
    logger.info("Shutdown complete")


def create_app(manager: SyncManager | None = None, events: EventBus | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing ``manager`` and ``events`` skips building the real infrastructure.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-account mail sync with AI categorization",
        lifespan=lifespan,
    )
    app.state.manager = manager
    app.state.events = events

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from onebox.api.routes import router

    app.include_router(router)

    return app


# Create app instance
app = create_app()


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
