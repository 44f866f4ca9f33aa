"""FastAPI application factory for CertAnchor."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from certanchor.common.config import get_settings
from certanchor.common.exceptions import HTTP_STATUS_BY_CODE, CertAnchorError, ValidationError
from certanchor.common.logging import setup_logging
from certanchor.common.schemas import ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from certanchor import deps
        db = deps.get_db()
        await db.init()
        await db.create_all()
        Path(settings.temp_dir).mkdir(parents=True, exist_ok=True)
        scheduler = deps.get_scheduler()
        scheduler.start()
        yield
        # Shutdown
        await scheduler.stop()
        await deps.get_verification_service().drain()
        await deps.get_temp_cleaner().drain()
        await deps.get_document_store().close()
        await deps.get_email_sender().close()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CertAnchorError)
    async def certanchor_error(request: Request, exc: CertAnchorError):
        status = HTTP_STATUS_BY_CODE.get(exc.code, 500)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        detail = ", ".join(exc.fields) if isinstance(exc, ValidationError) else ""
        return JSONResponse(
            status_code=status,
            content=ErrorResponse(error=exc.message, code=exc.code, detail=detail).model_dump(),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from certanchor.issuance.router import router as issuance_router
    from certanchor.certificates.router import router as certificates_router
    from certanchor.verification.router import router as verification_router
    from certanchor.maintenance.router import router as maintenance_router

    prefix = settings.api_prefix
    app.include_router(issuance_router, prefix=prefix, tags=["issuance"])
    app.include_router(certificates_router, prefix=prefix, tags=["certificates"])
    app.include_router(verification_router, prefix=prefix, tags=["verification"])
    app.include_router(maintenance_router, prefix=prefix, tags=["maintenance"])

    return app
