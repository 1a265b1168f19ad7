"""
Engine exception hierarchy
"""

from typing import Any, Dict, Optional


class CatalogEngineError(Exception):
    """Base exception for all engine errors"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


# Upstream catalog requests

class CatalogRequestError(CatalogEngineError):
    """Terminal upstream failure (4xx other than 404, bad payload)"""

    def __init__(self, message: str, url: str = None, status: int = None):
        super().__init__(message, {"url": url, "status": status})
        self.url = url
        self.status = status


class CatalogNotFound(CatalogRequestError):
    """Upstream answered 404"""


class RetryableCatalogError(CatalogRequestError):
    """Timeouts, connection errors, 429 and 5xx responses"""


# Persistence and runs

class StoreWriteError(CatalogEngineError):
    """A batch write was rejected; none of its rows were stored"""


class UnknownSource(CatalogEngineError):
    """No source registered under the given id"""


class SourceBusy(CatalogEngineError):
    """A run for this source is already in progress"""


class RunCancelled(CatalogEngineError):
    """Cooperative cancellation was requested for a run"""


# Resolver and tracking

class ResolverError(CatalogEngineError):
    """Typed resolution failure, surfaced to callers verbatim"""

    code = "resolver_error"


class UnsupportedSource(ResolverError):
    code = "unsupported_source"


class NotFound(ResolverError):
    code = "not_found"


class ColorUnavailable(ResolverError):
    code = "color_unavailable"


class CapacityExceeded(ResolverError):
    code = "capacity_exceeded"


class TrackingNotFound(ResolverError):
    code = "tracking_not_found"
