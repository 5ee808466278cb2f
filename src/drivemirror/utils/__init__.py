"""Shared utilities."""

from .logging import get_logger, log_async_execution_time, setup_logging

__all__ = ["get_logger", "log_async_execution_time", "setup_logging"]
