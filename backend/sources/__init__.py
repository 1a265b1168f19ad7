"""
Catalog source adapters
"""

from .client import CatalogClient, fetch_with_retry
from .registry import SourceRegistry
from .url_rules import ParsedProductUrl

__all__ = ["CatalogClient", "fetch_with_retry", "SourceRegistry", "ParsedProductUrl"]
