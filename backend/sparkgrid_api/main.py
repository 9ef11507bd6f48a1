import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sparkgrid import __version__
from sparkgrid.network.exceptions import NetworkAnalysisError
from sparkgrid_api.api.v1 import analysis
from sparkgrid_api.config import settings
from sparkgrid_api.core.logging import RequestLoggingMiddleware, setup_logging

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    setup_logging(json_format=settings.json_logs, debug=settings.debug)

    application = FastAPI(
        title=settings.app_name,
        version=__version__,
    )

    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(NetworkAnalysisError)
    async def network_analysis_error_handler(request: Request, exc: NetworkAnalysisError) -> JSONResponse:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    application.include_router(analysis.router, prefix="/api/v1", tags=["analysis"])
    application.include_router(analysis.limits_router, prefix="/api/v1", tags=["limits"])

    @application.get("/health")
    async def health_check() -> dict:
        return {"status": "ok", "version": __version__, "environment": settings.environment}

    return application


app = create_app()
