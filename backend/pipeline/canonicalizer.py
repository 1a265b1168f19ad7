"""
Variant Expander / Canonicalizer
Turns one raw product detail into one canonical record per surviving color
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from config.sources import CatalogSourceConfig
from database.models import CanonicalProduct
from sources import rules

logger = logging.getLogger(__name__)


@dataclass
class ColorVariant:
    """One color option extracted from a raw detail payload."""
    color_id: str
    name: Optional[str]
    index: int
    reference: Optional[str]
    price: Optional[int]
    old_price: Optional[int]
    availability: str
    image_url: Optional[str]
    canonical_id: str


@dataclass
class CanonicalizationResult:
    records: List[CanonicalProduct] = field(default_factory=list)
    products_seen: int = 0
    variants_seen: int = 0
    dropped_price: int = 0
    dropped_reference: int = 0
    dropped_color: int = 0

    @property
    def dropped(self) -> int:
        return self.dropped_price + self.dropped_reference + self.dropped_color

    def merge(self, other: "CanonicalizationResult") -> "CanonicalizationResult":
        self.records.extend(other.records)
        self.products_seen += other.products_seen
        self.variants_seen += other.variants_seen
        self.dropped_price += other.dropped_price
        self.dropped_reference += other.dropped_reference
        self.dropped_color += other.dropped_color
        return self


def extract_variants(raw: Dict[str, Any], config: CatalogSourceConfig) -> List[ColorVariant]:
    colors = [color for color in rules.extract_colors(raw) if color.get("id") is not None]
    multi_color = len(colors) > 1
    xmedia = rules.extract_xmedia(raw)

    variants = []
    for index, color in enumerate(colors):
        price, old_price = rules.resolve_price(color, raw, config.price_scale)
        variants.append(ColorVariant(
            color_id=str(color["id"]),
            name=color.get("name"),
            index=index,
            reference=rules.resolve_reference(color, raw, config),
            price=price,
            old_price=old_price,
            availability=rules.resolve_availability(color),
            image_url=rules.resolve_image_url(color, xmedia, config),
            canonical_id=rules.canonical_id_for(raw, color, config, multi_color),
        ))
    return variants


def canonicalize_product(raw: Dict[str, Any], config: CatalogSourceConfig,
                         category_ids: Optional[Iterable[str]] = None) -> CanonicalizationResult:
    """Expand one raw detail. A failing variant is dropped, its siblings survive."""
    result = CanonicalizationResult(products_seen=1)
    if raw.get("id") is None:
        result.dropped_color += 1
        return result

    all_colors = rules.extract_colors(raw)
    variants = extract_variants(raw, config)
    result.variants_seen = len(variants)
    # colors without an id cannot become variants
    result.dropped_color += len(all_colors) - len(variants)
    if not all_colors:
        result.dropped_color += 1
        logger.debug(f"Product {raw.get('id')} has no colors")
        return result

    surviving: List[ColorVariant] = []
    for variant in variants:
        if variant.price is None:
            result.dropped_price += 1
        elif not variant.reference:
            result.dropped_reference += 1
        else:
            surviving.append(variant)

    name = rules.product_name(raw) or ""
    category_id = next(iter(sorted(category_ids or [])), None)
    for variant in surviving:
        siblings = {
            other.color_id: other.canonical_id
            for other in surviving if other.color_id != variant.color_id
        }
        result.records.append(CanonicalProduct(
            source=config.source_id,
            canonical_id=variant.canonical_id,
            product_id=str(raw["id"]),
            reference=variant.reference,
            name=name,
            price=variant.price,
            old_price=variant.old_price,
            currency=config.currency,
            availability=variant.availability,
            color_id=variant.color_id,
            color_name=variant.name,
            color_index=variant.index,
            image_url=variant.image_url,
            product_url=rules.build_product_url(
                config, raw,
                canonical_id=variant.canonical_id,
                color_id=variant.color_id,
                reference=variant.reference,
            ),
            category_id=category_id,
            siblings=siblings,
        ))

    return result


def canonicalize_many(details: Iterable[Dict[str, Any]], config: CatalogSourceConfig,
                      identity_categories: Optional[Mapping[str, Iterable[str]]] = None) -> CanonicalizationResult:
    total = CanonicalizationResult()
    identity_categories = identity_categories or {}
    for raw in details:
        categories = identity_categories.get(str(raw.get("id")), ())
        total.merge(canonicalize_product(raw, config, categories))
    return total
