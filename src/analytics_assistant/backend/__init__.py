"""
Backend RPC access.
"""

from .client import BackendClient, BoundBackend

__all__ = ["BackendClient", "BoundBackend"]
