"""Main entrypoint and application factory for the OFX Import API.

This module initializes the FastAPI application, configures logging, creates the database
tables, starts the shared worker pool, and exposes the Scalar API reference endpoint for
interactive OpenAPI documentation. It also includes the main entrypoint for running the app
with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from scalar_fastapi import get_scalar_api_reference

from app.api.routes import router
from app.core.db import init_db
from app.core.settings import get_settings
from app.core.utils import get_logger
from app.workers.cluster_manager import ClusterManager


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure logging to file and console, and ensure the log directory exists."""
    settings = get_settings()
    log_path = Path(settings.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    level = logging.getLevelName(settings.log_level.upper())
    logger = get_logger("ofx-import")
    logger.setLevel(level)
    # Add file handler for persistent logs (not colorized)
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(file_handler)
    logger.propagate = False


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the tables and run the worker pool for the lifetime of the application."""
    settings = get_settings()
    init_db(settings.database_url)
    app.state.cluster = ClusterManager(settings.worker_pool_size, settings.worker_backend)
    try:
        yield
    finally:
        await app.state.cluster.shutdown()


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="OFX Import API",
    description="""
    The OFX Import API ingests bank statements in OFX format, classifies every transaction with a
    deterministic rule engine and stages the results for human review before they become ledger entries.

    **Endpoints:**
    - `POST /ofx-import/upload`: Upload an OFX file and start an import job. Returns an `import_id`.
    - `GET /ofx-import/{{import_id}}/status`: Poll the status and progress of an import job.
    - `GET /ofx-pending-transactions/import/{{import_id}}`: Review the staged transactions.
    - `POST /ofx-pending-transactions/import/{{import_id}}/approve`: Promote staged transactions to the ledger.
    - `POST /classification/suggest`: Try the classification rules on a description.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> HTMLResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
