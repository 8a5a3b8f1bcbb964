"""FastAPI application for the onboarding widget backend.

Run with ``uvicorn launchpad.main:app``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from launchpad.config import Settings
from launchpad.config import get_settings
from launchpad.core.services import build_services
from launchpad.database import initialize_database
from launchpad.database import make_engine
from launchpad.database import make_sessionmaker
from launchpad.exceptions import InvalidOnboardingField
from launchpad.exceptions import OnboardingStatusNotFound
from launchpad.routers.context import router as context_router
from launchpad.routers.events import router as events_router
from launchpad.routers.installation import router as installation_router
from launchpad.routers.metrics import router as metrics_router
from launchpad.routers.oauth import router as oauth_router
from launchpad.routers.onboarding import router as onboarding_router
from launchpad.routers.webhooks import router as webhooks_router

logger = logging.getLogger(__name__)


def _configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    # Per-request access lines drown the service logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(settings: Settings | None = None, *, crm_transport=None, analytics_transport=None) -> FastAPI:
    """Build the app; transports let tests stub outbound HTTP."""
    settings = settings or get_settings()
    _configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(settings.database_url)
        initialize_database(engine)
        services = build_services(
            settings,
            make_sessionmaker(engine),
            crm_transport=crm_transport,
            analytics_transport=analytics_transport,
        )
        app.state.services = services
        logger.info("launchpad.startup environment=%s", settings.environment)

        yield  # Application is running

        try:
            await services.aclose()
        finally:
            engine.dispose()
            logger.info("launchpad.shutdown")

    app = FastAPI(title="launchpad", redirect_slashes=True, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidOnboardingField)
    async def _invalid_field(_request: Request, exc: InvalidOnboardingField):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(OnboardingStatusNotFound)
    async def _status_raced(_request: Request, exc: OnboardingStatusNotFound):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc)},
            headers={"Retry-After": "1"},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(onboarding_router)
    app.include_router(events_router)
    app.include_router(webhooks_router)
    app.include_router(installation_router)
    app.include_router(oauth_router)
    app.include_router(context_router)
    app.include_router(metrics_router)

    return app


app = create_app()
