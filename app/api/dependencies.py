"""FastAPI dependencies for DI (settings, sessions, worker pool and services).

The worker pool lives on ``app.state`` for the whole application lifetime; services are cheap
wrappers created per request around it and the session factory.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import sessionmaker

from app.classification.engine import ClassificationEngine, default_engine
from app.core.db import get_session_factory
from app.core.settings import Settings, get_settings
from app.services.file_service import FileService
from app.services.import_service import ImportService
from app.services.review_service import ReviewService
from app.workers.cluster_manager import ClusterManager


def get_sessions(settings: Settings = Depends(get_settings)) -> sessionmaker:
    """Provide the session factory bound to the configured database."""
    return get_session_factory(settings.database_url)


def get_cluster(request: Request) -> ClusterManager:
    """Provide the application's shared worker pool."""
    return request.app.state.cluster


def get_import_service(
    sessions: sessionmaker = Depends(get_sessions),
    cluster: ClusterManager = Depends(get_cluster),
    settings: Settings = Depends(get_settings),
) -> ImportService:
    """Provide an ImportService instance for dependency injection."""
    return ImportService(sessions, cluster, settings)


def get_review_service(
    sessions: sessionmaker = Depends(get_sessions),
    settings: Settings = Depends(get_settings),
) -> ReviewService:
    """Provide a ReviewService instance for dependency injection."""
    return ReviewService(sessions, settings)


def get_file_service(settings: Settings = Depends(get_settings)) -> FileService:
    """Provide a FileService instance for dependency injection."""
    return FileService(settings)


def get_engine() -> ClassificationEngine:
    """Provide the process-wide classification engine."""
    return default_engine
