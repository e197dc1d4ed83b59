"""API middleware package."""

from src.tracker.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
