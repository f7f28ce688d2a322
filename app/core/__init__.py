"""Core package: provides models, database helpers, settings, and shared utilities."""

from .db import get_session_factory, init_db  # noqa: F401
from .models import ImportStatus, ProcessedTransaction  # noqa: F401
from .settings import Settings  # noqa: F401
from .utils import get_logger  # noqa: F401
