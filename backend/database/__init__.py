"""
Database package initialization
"""

from .client import CatalogDatabase
from .models import CategoryNode, ProductIdentity, CanonicalProduct, TrackingPreferences, TrackingRecord

__all__ = [
    "CatalogDatabase",
    "CategoryNode",
    "ProductIdentity",
    "CanonicalProduct",
    "TrackingPreferences",
    "TrackingRecord",
]
