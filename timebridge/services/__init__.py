"""Services"""

from timebridge.services.repository import Repository

__all__ = ["Repository"]
