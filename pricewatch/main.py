"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pymongo.errors import PyMongoError

from pricewatch.api.routes import analytics, products, reports, scrape
from pricewatch.config import settings
from pricewatch.db.client import create_mongo_client
from pricewatch.services import build_services

# Configure structured logging
from pricewatch.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Price Watch...")

    mongo_client = create_mongo_client()
    http_client = httpx.AsyncClient(timeout=30.0)

    services = build_services(settings, mongo_client, http_client)
    await services.store.ensure_indexes()
    app.state.services = services

    yield

    # Shutdown
    logger.info("Shutting down...")

    if services.dispatcher.pending_count:
        logger.info(f"Waiting for {services.dispatcher.pending_count} analytics dispatches")
    await services.dispatcher.drain(timeout=5.0)
    if services.guard is not None:
        await services.guard.close()
    await http_client.aclose()
    await mongo_client.close()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Price Watch",
    description="Track product prices and analytics reports",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])


# Include API routes. Fixed /api/products/* paths are registered before
# the /api/products/{product_id} catch-all.
app.include_router(reports.router)
app.include_router(analytics.router)
app.include_router(products.router)
app.include_router(scrape.router)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse({"error": "Database error"}, status_code=500)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    # Run with uvicorn
    uvicorn.run(
        "pricewatch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
