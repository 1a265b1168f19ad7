"""
Catalog source configuration
Immutable per-source settings for the itxrest-style catalog APIs
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from config.settings import Settings, settings as default_settings


class CatalogApi(str, Enum):
    """Listing and detail protocol a source speaks."""
    ITXREST = "itxrest"   # id listings, batched productsArray details
    ZARA = "zara"         # category listings embed full product components
    HM = "hm"             # paged listings embed one product per colour


class UniquenessKey(str, Enum):
    """Column set a source guarantees unique in its canonical store."""
    BY_REFERENCE = "by-reference"
    BY_IDENTITY = "by-identity"


class CategoryTreeShape(str, Enum):
    """Which category tree nodes own product listings."""
    LEAVES = "leaves"
    ALL_NODES = "all_nodes"


class ReferenceStyle(str, Enum):
    """How a normalized reference is written."""
    GROUPED = "grouped"   # 1280/226/800
    DIGITS = "digits"     # 1280226800


BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _site_headers(site_url: str, user_agent: str = BROWSER_USER_AGENT) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "tr-TR,tr;q=0.9,en;q=0.8",
        "Referer": site_url,
        "Cache-Control": "no-cache",
    }


@dataclass(frozen=True)
class CatalogSourceConfig:
    """Settings for one catalog source. Created at startup, never mutated."""

    source_id: str
    display_name: str
    api_base_url: str
    store_id: str
    catalog_id: str
    site_url: str
    language_id: str = "-43"
    app_id: str = "1"
    headers: Dict[str, str] = field(default_factory=dict)
    api: CatalogApi = CatalogApi.ITXREST

    # Discovery
    category_tree_shape: CategoryTreeShape = CategoryTreeShape.LEAVES
    excluded_category_keywords: Tuple[str, ...] = ("Landing", "UGC")
    listing_params: str = "showProducts=false"
    category_tree_params: str = ""
    static_categories: Tuple[Tuple[str, str], ...] = ()
    page_size: int = 36
    max_pages: int = 100
    checkpoint_every: int = 50

    # Fetching
    detail_params: str = ""
    chunk_size: int = 100
    batch_size: int = 500
    max_retries: int = 3
    retry_backoff: float = 3.0
    category_delay: float = 0.2
    chunk_delay: float = 0.5
    batch_delay: float = 2.0
    category_timeout: float = 15.0
    request_timeout: float = 30.0

    # Canonicalization
    uniqueness_key: UniquenessKey = UniquenessKey.BY_IDENTITY
    reference_rules: Tuple[str, ...] = ("structured",)
    reference_style: ReferenceStyle = ReferenceStyle.GROUPED
    primary_media_roles: Tuple[str, ...] = ()
    match_media_by_color_code: bool = False
    variant_id_field: Optional[str] = "catentryId"
    cdn_base_url: str = ""
    image_suffix: str = ""
    product_url_template: str = ""
    price_scale: int = 1
    image_width: str = "750"
    currency: str = "TRY"

    # Resolution and relaying
    domain_pattern: str = ""
    url_rule: str = ""
    image_hosts: Tuple[str, ...] = ()

    @property
    def details_in_listing(self) -> bool:
        """Listings already carry full product payloads, so there is no detail stage."""
        return self.api != CatalogApi.ITXREST

    def _catalog_path(self, version: int) -> str:
        return f"{self.api_base_url}/{version}/catalog/store/{self.store_id}/{self.catalog_id}"

    def category_tree_url(self) -> str:
        if self.api == CatalogApi.ZARA:
            return f"{self.api_base_url}/categories?{self.category_tree_params or 'ajax=true'}"
        return (
            f"{self._catalog_path(2)}/category"
            f"?languageId={self.language_id}&typeCatalog=1&appId={self.app_id}"
        )

    def category_products_url(self, category_id: str, page: int = 1) -> str:
        if self.api == CatalogApi.ZARA:
            return f"{self.api_base_url}/category/{category_id}/products?ajax=true"
        if self.api == CatalogApi.HM:
            params = [self.listing_params] if self.listing_params else []
            params += [f"page={page}", f"page-size={self.page_size}", f"categoryId={category_id}"]
            return f"{self.api_base_url}?{'&'.join(params)}"

        url = f"{self._catalog_path(3)}/category/{category_id}/product?languageId={self.language_id}"
        if self.listing_params:
            url += f"&{self.listing_params}"
        return f"{url}&appId={self.app_id}"

    def product_details_url(self, identities: Iterable[str]) -> str:
        if self.details_in_listing:
            raise ValueError(f"{self.source_id} has no batched detail endpoint")
        ids = "%2C".join(str(i) for i in identities)
        url = f"{self._catalog_path(3)}/productsArray?languageId={self.language_id}&productIds={ids}"
        if self.detail_params:
            url += f"&{self.detail_params}"
        return f"{url}&appId={self.app_id}"

    @property
    def unique_key_field(self) -> str:
        """Canonical product field that is unique within this source."""
        if self.uniqueness_key == UniquenessKey.BY_REFERENCE:
            return "reference"
        return "canonical_id"

    def with_overrides(self, **changes) -> "CatalogSourceConfig":
        return replace(self, **changes)


def build_source_configs(settings: Settings = default_settings) -> List[CatalogSourceConfig]:
    """Build the registered sources. Sources without catalog ids are skipped."""
    common = dict(
        max_retries=settings.SCRAPER_MAX_RETRIES,
        retry_backoff=settings.SCRAPER_RETRY_BACKOFF,
        request_timeout=float(settings.SCRAPER_TIMEOUT),
        category_timeout=float(settings.SCRAPER_CATEGORY_TIMEOUT),
        checkpoint_every=settings.SCRAPER_CHECKPOINT_EVERY,
    )

    configs = [
        CatalogSourceConfig(
            source_id="bershka",
            display_name="Bershka",
            api_base_url="https://www.bershka.com/itxrest",
            store_id="44109521",
            catalog_id="40259537",
            site_url="https://www.bershka.com/",
            headers=_site_headers("https://www.bershka.com/"),
            detail_params="categoryId=1010193546",
            category_delay=0.5,
            chunk_delay=3.0,
            batch_delay=3.0,
            reference_rules=("media_path", "structured"),
            primary_media_roles=("a4o",),
            cdn_base_url="https://static.bershka.net",
            product_url_template="https://www.bershka.com/tr/{slug}-c0p{product_id}.html?colorId={color_id}",
            domain_pattern=r"(^|\.)bershka\.com$",
            url_rule="bershka",
            image_hosts=("static.bershka.net",),
            **common,
        ),
        CatalogSourceConfig(
            source_id="stradivarius",
            display_name="Stradivarius",
            api_base_url="https://www.stradivarius.com/itxrest",
            store_id="54009571",
            catalog_id="50331068",
            site_url="https://www.stradivarius.com/",
            headers=_site_headers("https://www.stradivarius.com/", "PostmanRuntime/7.36.0"),
            chunk_delay=0.2,
            batch_delay=2.0,
            uniqueness_key=UniquenessKey.BY_REFERENCE,
            reference_rules=("structured", "media_path"),
            primary_media_roles=("m1", "s1"),
            match_media_by_color_code=True,
            cdn_base_url="https://static.e-stradivarius.net",
            product_url_template=(
                "https://www.stradivarius.com/tr/{slug}-l{model}?colorId={color_id}&pelement={canonical_id}"
            ),
            domain_pattern=r"(^|\.)stradivarius\.com$",
            url_rule="stradivarius",
            image_hosts=("static.e-stradivarius.net",),
            **common,
        ),
    ]

    if settings.OYSHO_STORE_ID and settings.OYSHO_CATALOG_ID:
        configs.append(CatalogSourceConfig(
            source_id="oysho",
            display_name="Oysho",
            api_base_url="https://www.oysho.com/itxrest",
            store_id=settings.OYSHO_STORE_ID,
            catalog_id=settings.OYSHO_CATALOG_ID,
            site_url="https://www.oysho.com/",
            headers=_site_headers("https://www.oysho.com/"),
            listing_params="",
            uniqueness_key=UniquenessKey.BY_REFERENCE,
            reference_rules=("structured",),
            primary_media_roles=("m1",),
            match_media_by_color_code=True,
            cdn_base_url="https://static.oysho.net",
            product_url_template="https://www.oysho.com/tr/{slug}-l{product_id}?colorId={color_id}",
            domain_pattern=r"(^|\.)oysho\.com$",
            url_rule="oysho",
            image_hosts=("static.oysho.net",),
            **common,
        ))

    if settings.PULLANDBEAR_STORE_ID and settings.PULLANDBEAR_CATALOG_ID:
        configs.append(CatalogSourceConfig(
            source_id="pullandbear",
            display_name="Pull&Bear",
            api_base_url="https://www.pullandbear.com/itxrest",
            store_id=settings.PULLANDBEAR_STORE_ID,
            catalog_id=settings.PULLANDBEAR_CATALOG_ID,
            site_url="https://www.pullandbear.com/",
            headers=_site_headers("https://www.pullandbear.com/"),
            category_tree_shape=CategoryTreeShape.ALL_NODES,
            listing_params="showProducts=false&priceFilter=true",
            reference_rules=("structured",),
            reference_style=ReferenceStyle.DIGITS,
            primary_media_roles=("a6m",),
            cdn_base_url="https://static.pullandbear.net/2/photos",
            image_suffix="_2_1_8.jpg",
            product_url_template=(
                "https://www.pullandbear.com/tr/{slug}-l0{model}?cS={color_id}&pelement={canonical_id}"
            ),
            domain_pattern=r"(^|\.)pullandbear\.com$",
            url_rule="pullandbear",
            image_hosts=("static.pullandbear.net",),
            **common,
        ))

    if settings.MASSIMODUTTI_STORE_ID and settings.MASSIMODUTTI_CATALOG_ID:
        configs.append(CatalogSourceConfig(
            source_id="massimodutti",
            display_name="Massimo Dutti",
            api_base_url="https://www.massimodutti.com/itxrest",
            store_id=settings.MASSIMODUTTI_STORE_ID,
            catalog_id=settings.MASSIMODUTTI_CATALOG_ID,
            site_url="https://www.massimodutti.com/",
            headers=_site_headers("https://www.massimodutti.com/"),
            category_tree_shape=CategoryTreeShape.ALL_NODES,
            reference_rules=("media_path", "structured"),
            primary_media_roles=("o1",),
            cdn_base_url="https://static.massimodutti.net",
            product_url_template="https://www.massimodutti.com/tr/product/{product_id}?colorId={color_id}",
            domain_pattern=r"(^|\.)massimodutti\.com$",
            url_rule="massimodutti",
            image_hosts=("static.massimodutti.net",),
            **common,
        ))

    if settings.ZARA_ENABLED:
        configs.append(CatalogSourceConfig(
            source_id="zara",
            display_name="Zara",
            api=CatalogApi.ZARA,
            api_base_url="https://www.zara.com/tr/tr",
            store_id="",
            catalog_id="",
            site_url="https://www.zara.com/tr/tr",
            headers={**_site_headers("https://www.zara.com/tr/tr"), "X-Requested-With": "XMLHttpRequest"},
            category_tree_params="categoryId=2527573&categorySeoId=2641&ajax=true",
            excluded_category_keywords=(
                "DIVIDER", "THE NEW", "ÇOK SATANLAR", "50. YIL DÖNÜMÜ", "BACK TO", "SPECIAL",
                "POP-UP", "TRAVEL", "JOIN LIFE", "CAREERS", "MAĞAZALAR", "HEDİYE KARTI",
                "UYGULAMA İNDİR",
            ),
            category_delay=5.0,
            batch_delay=0.0,
            reference_rules=("display", "structured"),
            variant_id_field="productId",
            product_url_template=(
                "https://www.zara.com/tr/tr/{slug}-p{seo_product_id}.html?v1={product_id}&v2={canonical_id}"
            ),
            domain_pattern=r"(^|\.)zara\.com$",
            url_rule="zara",
            image_hosts=("static.zara.net",),
            **common,
        ))

    if settings.HM_API_BASE_URL and settings.HM_CATEGORIES:
        configs.append(CatalogSourceConfig(
            source_id="hm",
            display_name="H&M",
            api=CatalogApi.HM,
            api_base_url=settings.HM_API_BASE_URL,
            store_id="",
            catalog_id="",
            site_url="https://www2.hm.com/tr_tr/",
            headers=_site_headers("https://www2.hm.com/tr_tr/"),
            listing_params=settings.HM_LISTING_PARAMS,
            static_categories=tuple(settings.HM_CATEGORIES.items()),
            page_size=settings.HM_PAGE_SIZE,
            category_delay=2.0,
            batch_delay=0.0,
            reference_rules=("article",),
            reference_style=ReferenceStyle.DIGITS,
            variant_id_field=None,
            price_scale=100,
            product_url_template="https://www2.hm.com{path}",
            domain_pattern=r"(^|\.)hm\.com$",
            url_rule="hm",
            image_hosts=("image.hm.com", "lp2.hm.com"),
            **common,
        ))

    return configs
