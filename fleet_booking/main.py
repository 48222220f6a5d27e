import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import FleetError
from .logging_config import setup_logging
from .routes import router
from .services import FleetServices, build_services

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, services: FleetServices | None = None) -> FastAPI:
    """
    Build the HTTP app.

    Tests pass prebuilt ``services``; otherwise they are built from settings
    on startup and closed on shutdown.
    """
    settings = settings or Settings()

    app = FastAPI(title="Fleet Booking Service")
    app.include_router(router)
    app.state.services = services

    @app.exception_handler(FleetError)
    async def fleet_error_handler(request: Request, exc: FleetError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "fleet-booking"}

    @app.on_event("startup")
    async def startup():
        setup_logging(settings.LOG_LEVEL)
        if app.state.services is None:
            app.state.services = build_services(settings)
            await app.state.services.database.create_all()
        logger.info("Fleet booking service started")

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.services is not None:
            await app.state.services.close()

    return app


app = create_app()
