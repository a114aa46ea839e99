"""Logging module for the proxy."""

from .recorder import Hit, HitRecorder
from .setup import LOGGER_NAME, logger, setup_logging

__all__ = [
    "Hit",
    "HitRecorder",
    "LOGGER_NAME",
    "logger",
    "setup_logging",
]
