"""
Product URL extraction rules
Each rule maps a marketing URL to a primary identity and optional color/variant ids
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional
import re


@dataclass(frozen=True)
class ParsedProductUrl:
    identity: str
    color_id: Optional[str] = None
    variant_id: Optional[str] = None


UrlRule = Callable[[str], Optional[ParsedProductUrl]]


def _search(pattern: str, text: str) -> Optional[str]:
    match = re.search(pattern, text)
    return match.group(1) if match else None


def _search_last(pattern: str, text: str) -> Optional[str]:
    matches = re.findall(pattern, text)
    return matches[-1] if matches else None


def parse_bershka_url(url: str) -> Optional[ParsedProductUrl]:
    """``...-c0p123456789.html?colorId=800``, falling back to any ``<digits>.html``."""
    identity = _search(r"c0p(\d+)\.html", url) or _search(r"(\d+)\.html", url)
    if not identity:
        return None
    return ParsedProductUrl(identity, color_id=_search(r"[?&]colorId=(\d+)", url))


def parse_stradivarius_url(url: str) -> Optional[ParsedProductUrl]:
    """``pelement`` carries the variant id; ``/product/<id>`` is the legacy form."""
    color_id = _search(r"[?&]colorId=(\d+)", url)
    variant_id = _search(r"[?&]pelement=(\d+)", url)
    if variant_id:
        return ParsedProductUrl(variant_id, color_id=color_id, variant_id=variant_id)
    identity = _search(r"/product/(\d+)", url)
    if not identity:
        return None
    return ParsedProductUrl(identity, color_id=color_id)


def parse_oysho_url(url: str) -> Optional[ParsedProductUrl]:
    identity = _search_last(r"-l(\d+)", url)
    if not identity:
        return None
    return ParsedProductUrl(identity, color_id=_search(r"[?&]colorId=(\d+)", url))


def parse_pullandbear_url(url: str) -> Optional[ParsedProductUrl]:
    variant_id = _search(r"[?&]pelement=(\d+)", url)
    if not variant_id:
        return None
    return ParsedProductUrl(variant_id, color_id=_search(r"[?&]cS=(\d+)", url), variant_id=variant_id)


def parse_massimodutti_url(url: str) -> Optional[ParsedProductUrl]:
    identity = _search(r"/product/(\d+)", url) or _search_last(r"-l(\d+)", url)
    if not identity:
        return None
    return ParsedProductUrl(identity, color_id=_search(r"[?&]colorId=(\d+)", url))


def parse_zara_url(url: str) -> Optional[ParsedProductUrl]:
    """``v1`` is the product id and ``v2`` the colour variant; ``/product/<id>`` is the short form."""
    identity = _search(r"[?&]v1=(\d+)", url) or _search(r"/product/(\d+)", url)
    if not identity:
        return None
    return ParsedProductUrl(identity, variant_id=_search(r"[?&]v2=(\d+)", url))


def parse_hm_url(url: str) -> Optional[ParsedProductUrl]:
    """``productpage.<article>.html``; the article number already names the colour."""
    identity = _search(r"productpage\.(\d+)\.html", url)
    if not identity:
        return None
    return ParsedProductUrl(identity)


URL_RULES: Dict[str, UrlRule] = {
    "bershka": parse_bershka_url,
    "stradivarius": parse_stradivarius_url,
    "oysho": parse_oysho_url,
    "pullandbear": parse_pullandbear_url,
    "massimodutti": parse_massimodutti_url,
    "zara": parse_zara_url,
    "hm": parse_hm_url,
}
