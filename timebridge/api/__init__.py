"""API routes"""

from timebridge.api import jobs, users

__all__ = ["jobs", "users"]
