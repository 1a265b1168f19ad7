"""
Tracking list package
"""

from .cache import TrackingCache
from .service import TrackingService

__all__ = ["TrackingCache", "TrackingService"]
