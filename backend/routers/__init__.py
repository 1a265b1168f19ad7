"""
Routers package for API endpoints
"""

from . import scraping, progress, tracking, images, products

__all__ = ["scraping", "progress", "tracking", "images", "products"]
