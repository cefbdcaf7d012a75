import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from facturx_batch.core.config import cors_origins, setup_logging
from facturx_batch.core.errors import BatchError
from facturx_batch.routes import batches, invoices, maintenance

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Factur-X Batch API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(batches.router, prefix="/api")
    app.include_router(invoices.router, prefix="/api")
    app.include_router(maintenance.router, prefix="/api")

    @app.exception_handler(BatchError)
    async def handle_batch_error(request: Request, exc: BatchError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.code, **exc.details},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": "INTERNAL_ERROR"},
        )

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Factur-X Batch API",
                "docs": "/docs",
                "health": "/api/health",
            }
        )

    return app


app = create_app()
