"""API middleware package."""

from src.deal_context.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
