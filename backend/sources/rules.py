"""
Catalog extraction rules
Pure functions shared by every source; per-source behaviour is selected by CatalogSourceConfig
"""

from typing import Any, Dict, List, Optional, Tuple
import math
import re

from config.sources import CatalogSourceConfig, ReferenceStyle

# 1280/226/800, 1280.226.800, 1280 226 800, 1280226800
REFERENCE_CODE_SHAPE = re.compile(r"^\s*(\d{4})[\s./-]?(\d{3})[\s./-]?(\d{3})\s*$")
MEDIA_PATH_REFERENCE = re.compile(r"/p/(\d+/\d+/\d+)/")
STRUCTURED_PREFIX = re.compile(r"^[A-Z]\d")
STRUCTURED_SUFFIX = re.compile(r"-I\d+$")
SLUG_INVALID = re.compile(r"[^a-z0-9]+")


# References

def format_reference(digits: str, style: ReferenceStyle = ReferenceStyle.GROUPED) -> str:
    """Write ten reference digits in the given style."""
    if style == ReferenceStyle.DIGITS:
        return digits
    return f"{digits[:4]}/{digits[4:7]}/{digits[7:10]}"


def normalize_reference_code(text: str) -> Optional[str]:
    """Return ``dddd/ddd/ddd`` when text looks like a short reference code."""
    if not text:
        return None
    match = REFERENCE_CODE_SHAPE.match(text)
    if not match:
        return None
    return "/".join(match.groups())


def reference_digits(reference: str) -> str:
    return re.sub(r"\D", "", reference or "")


def reference_from_media_path(url: Optional[str]) -> Optional[str]:
    """Digits of the ``/p/dddd/ddd/ddd/`` segment of a media URL."""
    if not url:
        return None
    match = MEDIA_PATH_REFERENCE.search(url)
    if not match:
        return None
    digits = match.group(1).replace("/", "")
    return digits[:10] if len(digits) >= 10 else None


def reference_from_structured(value: Optional[str]) -> Optional[str]:
    """Strip type/catalog prefix and ``-I<season>`` suffix, keep ten digits.

    ``C0128022680002-I2025`` -> ``1280226800``
    """
    if not value:
        return None
    text = STRUCTURED_SUFFIX.sub("", str(value).strip().upper())
    text = STRUCTURED_PREFIX.sub("", text)
    digits = reference_digits(text)
    return digits[:10] if len(digits) >= 10 else None


def reference_from_article(article_id: Any) -> Optional[str]:
    """Article numbers carry the model and colour in their first ten digits."""
    digits = reference_digits(str(article_id or ""))
    return digits[:10] if len(digits) >= 10 else None


def resolve_reference(color: Dict[str, Any], raw: Dict[str, Any], config: CatalogSourceConfig) -> Optional[str]:
    """Apply the source's reference rules in order; first hit wins."""
    for rule in config.reference_rules:
        digits = None
        if rule == "media_path":
            digits = reference_from_media_path(_color_image_path(color))
        elif rule == "structured":
            digits = reference_from_structured(color.get("reference") or raw.get("reference"))
        elif rule == "display":
            code = normalize_reference_code(str((raw.get("detail") or {}).get("displayReference") or ""))
            digits = reference_digits(code) if code else None
        elif rule == "article":
            digits = reference_from_article(raw.get("id"))
        if digits:
            return format_reference(digits, config.reference_style)
    return None


# Colors

def extract_colors(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Color list from bundle details, then product-level colors, then the legacy array."""
    bundle_colors: List[Dict[str, Any]] = []
    seen = set()
    for bundle in raw.get("bundleProductSummaries") or []:
        for color in (bundle.get("detail") or {}).get("colors") or []:
            key = str(color.get("id"))
            if key not in seen:
                seen.add(key)
                bundle_colors.append(color)
    if bundle_colors:
        return bundle_colors

    product_colors = (raw.get("detail") or {}).get("colors") or raw.get("colors") or []
    if product_colors:
        return list(product_colors)

    return list(raw.get("bundleColors") or [])


def extract_xmedia(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    groups: List[Dict[str, Any]] = []
    for bundle in raw.get("bundleProductSummaries") or []:
        groups.extend((bundle.get("detail") or {}).get("xmedia") or [])
    groups.extend((raw.get("detail") or {}).get("xmedia") or [])
    return groups


def product_name(raw: Dict[str, Any]) -> Optional[str]:
    name = raw.get("name") or raw.get("productName")
    if name:
        return name
    for bundle in raw.get("bundleProductSummaries") or []:
        if bundle.get("name"):
            return bundle["name"]
    return None


# Prices

def to_minor_units(value: Any, scale: int = 1) -> Optional[int]:
    """Parse a price and multiply by the source's ``scale``.

    Inditex-style sources send integer minor units (scale 1), others send
    major units (scale 100). Every numeric input is scaled the same way:
    ``12.0`` and ``"12"`` are both ``12 * scale``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return int(round(number * scale))


def _positive_price(value: Any, scale: int) -> Optional[int]:
    price = to_minor_units(value, scale)
    return price if price is not None and price > 0 else None


def resolve_price(color: Dict[str, Any], raw: Dict[str, Any],
                  scale: int = 1) -> Tuple[Optional[int], Optional[int]]:
    """(price, old_price) from the first buyable size, else product-level prices.

    Zero or negative prices count as missing.
    """
    for size in color.get("sizes") or []:
        if size.get("isBuyable") is False:
            continue
        price = _positive_price(size.get("price"), scale)
        if price is not None:
            return price, _positive_price(size.get("oldPrice"), scale)

    for holder in (color, raw, raw.get("detail") or {}):
        price = _positive_price(holder.get("price"), scale)
        if price is not None:
            return price, _positive_price(holder.get("oldPrice"), scale)
    return None, None


IN_STOCK_STATES = {"instock", "available", "lowonstock", "lowstock"}


def resolve_availability(color: Dict[str, Any]) -> str:
    """An explicit stock state wins; otherwise in stock while any size is buyable."""
    explicit = color.get("availability") or color.get("stockState")
    if isinstance(explicit, str) and explicit.strip():
        state = re.sub(r"[\s_-]", "", explicit.lower())
        return "in_stock" if state in IN_STOCK_STATES else "out_of_stock"

    sizes = color.get("sizes") or []
    if not sizes:
        return "in_stock"
    return "in_stock" if any(size.get("isBuyable") is not False for size in sizes) else "out_of_stock"


# Images

def _color_image_path(color: Dict[str, Any]) -> Optional[str]:
    image = color.get("image") or {}
    return image.get("url") if isinstance(image, dict) else None


def _media_url(media: Dict[str, Any]) -> Optional[str]:
    extra = media.get("extraInfo") or {}
    return extra.get("deliveryUrl") or media.get("url")


def _media_role(media: Dict[str, Any]) -> Optional[str]:
    return (media.get("extraInfo") or {}).get("originalName")


def color_medias(color: Dict[str, Any], xmedia: List[Dict[str, Any]],
                 config: CatalogSourceConfig) -> List[Dict[str, Any]]:
    """Media items that belong to one color."""
    medias: List[Dict[str, Any]] = []
    if config.match_media_by_color_code:
        color_code = str(color.get("id", "")).zfill(3)
        for group in xmedia:
            for item in group.get("xmediaItems") or []:
                for media in item.get("medias") or []:
                    id_media = str(media.get("idMedia") or "")
                    if id_media and id_media.split("_")[0][-3:] == color_code:
                        medias.append(media)
        return medias

    image_path = _color_image_path(color)
    if not image_path:
        return medias
    color_dir = image_path.rsplit("/", 1)[0]
    for group in xmedia:
        if group.get("path") != color_dir:
            continue
        for item in group.get("xmediaItems") or []:
            medias.extend(item.get("medias") or [])
    return medias


def _embedded_color_image(color: Dict[str, Any], width: str) -> Optional[str]:
    """First media carried on the color itself, with its width placeholder filled."""
    for media in (color.get("xmedia") or []) + [color.get("pdpMedia") or {}]:
        url = media.get("url") if isinstance(media, dict) else None
        if url:
            return url.replace("{width}", width)
    return None


def resolve_image_url(color: Dict[str, Any], xmedia: List[Dict[str, Any]],
                      config: CatalogSourceConfig) -> Optional[str]:
    """Primary-role media -> any delivered media -> color media -> raw image path on the CDN -> None."""
    medias = color_medias(color, xmedia, config)

    for role in config.primary_media_roles:
        for media in medias:
            if _media_role(media) == role and _media_url(media):
                return _media_url(media)

    for media in medias:
        delivery_url = (media.get("extraInfo") or {}).get("deliveryUrl")
        if delivery_url:
            return delivery_url

    embedded = _embedded_color_image(color, config.image_width)
    if embedded:
        return embedded

    image_path = _color_image_path(color)
    if image_path:
        if "://" in image_path:
            return image_path
        return f"{config.cdn_base_url}{image_path.split('?', 1)[0]}{config.image_suffix}"

    return None


# Identity and URLs

def canonical_id_for(raw: Dict[str, Any], color: Dict[str, Any],
                     config: CatalogSourceConfig, multi_color: bool) -> str:
    """Variant id when the source exposes one, else the parent id.

    A multi-color product without variant ids gets ``<parent>_<color>`` so
    that each color keeps its own row.
    """
    product_id = str(raw.get("id"))
    if config.variant_id_field:
        variant_id = color.get(config.variant_id_field)
        if variant_id:
            return str(variant_id)
    if multi_color:
        return f"{product_id}_{color.get('id')}"
    return product_id


def slugify(text: Optional[str]) -> str:
    slug = SLUG_INVALID.sub("-", (text or "").lower()).strip("-")
    return slug or "product"


def build_product_url(config: CatalogSourceConfig, raw: Dict[str, Any], *, canonical_id: str,
                      color_id: Optional[str], reference: str) -> Optional[str]:
    if not config.product_url_template:
        return None
    digits = reference_digits(reference)
    seo = raw.get("seo") or {}
    return config.product_url_template.format(
        slug=raw.get("productUrl") or seo.get("keyword") or slugify(product_name(raw)),
        seo_product_id=seo.get("seoProductId") or raw.get("id"),
        path=raw.get("url") or "",
        product_id=raw.get("id"),
        color_id=color_id or "",
        canonical_id=canonical_id,
        reference=reference,
        model=digits[:-3] if len(digits) > 3 else digits,
    )
