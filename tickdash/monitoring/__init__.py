"""Monitoring module for logging."""

from .logger import get_logger, setup_logger, DashboardLogger

__all__ = ["get_logger", "setup_logger", "DashboardLogger"]
