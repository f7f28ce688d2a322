"""Shared utility functions for the OFX import pipeline."""

import logging
import uuid
from collections.abc import Iterator, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import colorlog

T = TypeVar("T")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project.

    Only the top-level project logger carries handlers; ``ofx-import.api`` and friends
    propagate to it, so a file handler added there sees every module.
    """
    root_name = name.split(".", 1)[0]
    if root_name != name:
        get_logger(root_name)
        return logging.getLogger(name)
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def ensure_dir(path: str | Path) -> None:
    """Ensure a directory exists (like mkdir -p)."""
    Path(path).mkdir(parents=True, exist_ok=True)


def new_id() -> str:
    """Return a new random identifier for stored rows."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Get the current UTC time as an aware datetime."""
    return datetime.now(UTC)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield contiguous slices of ``items`` holding at most ``size`` elements."""
    if size < 1:
        msg = f"chunk size must be a positive integer, got {size}"
        raise ValueError(msg)
    for start in range(0, len(items), size):
        yield items[start : start + size]
