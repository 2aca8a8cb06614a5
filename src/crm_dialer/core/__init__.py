"""Core utilities: logging, errors, retry and phone handling."""

from crm_dialer.core.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
