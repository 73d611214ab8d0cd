"""
API module for the FastAPI application.
"""

from .app import ServiceContainer, create_app
from .rate_limit import RateLimiter

__all__ = ["ServiceContainer", "create_app", "RateLimiter"]
