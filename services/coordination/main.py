import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import build_services
from api.endpoints.conflicts import router as conflicts_router
from api.endpoints.moratoriums import router as moratoriums_router
from api.endpoints.projects import router as projects_router
from api.middleware import LoggingMiddleware, get_allowed_origins
from database import close_db_connections, create_schema, engine, get_session_factory
from error_handler import ErrorHandler
from events import EventDispatcher
from logging_config import get_logger
from scheduler import create_scheduler, start_scheduler, stop_scheduler

logger = get_logger(__name__)

ENABLE_SCHEDULER = os.getenv("ENABLE_SCHEDULER", "true").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    owns_database = app.state.services is None
    if owns_database:
        session_factory = get_session_factory()
        await create_schema(engine)
        app.state.services = build_services(session_factory, app.state.dispatcher)

    services = app.state.services
    await app.state.dispatcher.start()

    scheduler = None
    if app.state.enable_scheduler:
        scheduler = create_scheduler(services.batch_runner, services.moratoriums)
        start_scheduler(scheduler)

    logger.info("permit_coordination_online")
    try:
        yield
    finally:
        if scheduler is not None:
            stop_scheduler(scheduler)
        await ErrorHandler.safe_execute_async(
            app.state.dispatcher.drain(),
            context={"phase": "shutdown", "pending_events": app.state.dispatcher.pending},
        )
        await app.state.dispatcher.stop()
        if owns_database:
            await close_db_connections()
        logger.info("permit_coordination_stopped")


def create_app(session_factory=None, dispatcher=None, notifier=None, enable_scheduler=ENABLE_SCHEDULER) -> FastAPI:
    """
    Application factory.

    Without a session_factory the app uses DATABASE_URL and builds its
    services on startup; with one (tests, embedding) services are built
    immediately.
    """
    app = FastAPI(title="Permit Coordination Engine", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    app.include_router(projects_router)
    app.include_router(conflicts_router)
    app.include_router(moratoriums_router)

    app.state.dispatcher = dispatcher or EventDispatcher()
    app.state.enable_scheduler = enable_scheduler
    app.state.services = (
        build_services(session_factory, app.state.dispatcher, notifier)
        if session_factory is not None
        else None
    )

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "pending_events": app.state.dispatcher.pending,
            "dispatcher_running": app.state.dispatcher.running,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
