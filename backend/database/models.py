"""
Database Models
Pydantic models for catalog, identity, product and tracking rows
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class CategoryNode(BaseModel):
    """A product-owning node of a source's category tree."""
    source: str
    category_id: str
    name: str
    path: str
    is_active: bool = True
    product_count: int = 0
    last_updated: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ProductIdentity(BaseModel):
    """Raw source product id with the categories it was listed in."""
    source: str
    product_id: str
    categories: List[str] = Field(default_factory=list)
    is_processed: bool = False

    @property
    def category_count(self) -> int:
        return len(self.categories)


class CanonicalProduct(BaseModel):
    """One buyable color variant, the persisted unit of the catalog."""
    source: str
    canonical_id: str
    product_id: str
    reference: str
    name: str
    price: int
    old_price: Optional[int] = None
    currency: str = "TRY"
    availability: str = "in_stock"
    color_id: Optional[str] = None
    color_name: Optional[str] = None
    color_index: int = 0
    image_url: Optional[str] = None
    product_url: Optional[str] = None
    category_id: Optional[str] = None
    siblings: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        row = self.model_dump(mode="json")
        # created_at is owned by the database default
        row.pop("created_at", None)
        return row


class TrackingPreferences(BaseModel):
    """Alert preferences attached to a tracked product."""
    price_alert_threshold: Optional[int] = None
    stock_alert: bool = False
    notification_enabled: bool = True


class TrackingRecord(TrackingPreferences):
    """A (user, canonical product) binding."""
    id: Optional[str] = None
    user_id: str
    source: str
    canonical_id: str
    custom_settings: Dict[str, Any] = Field(default_factory=dict)
    tracking_started_at: Optional[datetime] = None
    last_checked: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class AlertType(str, Enum):
    ALL = "all"
    PRICE = "price"
    STOCK = "stock"


class TrackedProduct(TrackingRecord):
    """A tracking record joined with its current catalog row."""
    product: Optional[CanonicalProduct] = None
    alert_reasons: List[str] = Field(default_factory=list)

    @classmethod
    def join(cls, record: TrackingRecord, product: Optional[CanonicalProduct],
             alert_reasons: Optional[List[str]] = None) -> "TrackedProduct":
        return cls(**record.model_dump(), product=product, alert_reasons=alert_reasons or [])
