"""Shared test fixtures."""

from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse
import copy
import re
import uuid

import pytest

from config.settings import Settings
from config.sources import build_source_configs
from database.client import CatalogDatabase
from progress.tracker import ProgressTracker
from sources.registry import SourceRegistry
from utils.errors import CatalogNotFound

ZERO_DELAYS = dict(category_delay=0, chunk_delay=0, batch_delay=0, retry_backoff=0)
HM_SETTINGS = dict(
    HM_API_BASE_URL="https://www2.hm.com/tr_tr/api/listing",
    HM_CATEGORIES={"ladies_tops": "Tops", "ladies_dresses": "Dresses"},
    HM_PAGE_SIZE=2,
)


# In-memory Supabase

def _ilike(column: str, pattern: str):
    regex = re.compile(".*".join(re.escape(part) for part in pattern.split("%")), re.IGNORECASE)
    return lambda row: bool(regex.fullmatch(str(row.get(column) or "")))


class FakeQuery:
    """Subset of the postgrest query builder used by CatalogDatabase."""

    def __init__(self, store: "FakeSupabase", table: str):
        self.store = store
        self.table_name = table
        self.operation = "select"
        self.columns = "*"
        self.count_mode = None
        self.filters = []
        self.order_by = None
        self.row_range = None
        self.row_limit = None
        self.payload = None
        self.on_conflict = None

    def select(self, columns: str = "*", count: Optional[str] = None):
        self.operation = "select"
        self.columns = columns
        self.count_mode = count
        return self

    def eq(self, column: str, value: Any):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values: List[Any]):
        allowed = set(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def lt(self, column: str, value: Any):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def ilike(self, column: str, pattern: str):
        self.filters.append(_ilike(column, pattern))
        return self

    def or_(self, filters: str):
        """Only ``column.ilike.pattern`` terms are understood."""
        terms = []
        for term in filters.split(","):
            column, operator, pattern = term.split(".", 2)
            assert operator == "ilike", f"unsupported or_ operator {operator}"
            terms.append(_ilike(column, pattern))
        self.filters.append(lambda row: any(matches(row) for matches in terms))
        return self

    def order(self, column: str, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def range(self, start: int, end: int):
        self.row_range = (start, end)
        return self

    def limit(self, count: int):
        self.row_limit = count
        return self

    def upsert(self, rows, on_conflict: str = ""):
        self.operation = "upsert"
        self.payload = rows if isinstance(rows, list) else [rows]
        self.on_conflict = [column.strip() for column in on_conflict.split(",") if column.strip()]
        return self

    def insert(self, rows):
        self.operation = "insert"
        self.payload = rows if isinstance(rows, list) else [rows]
        return self

    def update(self, fields: Dict[str, Any]):
        self.operation = "update"
        self.payload = fields
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        return [row for row in self.store.rows(self.table_name) if all(f(row) for f in self.filters)]

    async def execute(self):
        self.store.calls.append((self.table_name, self.operation))
        if self.operation != "select" and self.table_name in self.store.failing_tables:
            raise self.store.failing_tables[self.table_name]
        return getattr(self, f"_execute_{self.operation}")()

    def _execute_select(self):
        rows = self._matching()
        if self.order_by:
            column, desc = self.order_by
            rows = sorted(rows, key=lambda row: (row.get(column) is None, row.get(column)), reverse=desc)
        count = len(rows) if self.count_mode else None
        if self.row_range:
            rows = rows[self.row_range[0]:self.row_range[1] + 1]
        if self.row_limit is not None:
            rows = rows[:self.row_limit]
        if self.columns != "*":
            wanted = [column.strip() for column in self.columns.split(",")]
            rows = [{column: row.get(column) for column in wanted} for row in rows]
        return SimpleNamespace(data=copy.deepcopy(rows), count=count)

    def _execute_upsert(self):
        table = self.store.rows(self.table_name)
        written = []
        for incoming in copy.deepcopy(self.payload):
            existing = next(
                (row for row in table if all(row.get(c) == incoming.get(c) for c in self.on_conflict)),
                None,
            )
            if existing is not None:
                existing.update(incoming)
                written.append(existing)
            else:
                incoming.setdefault("id", self.store.next_id())
                table.append(incoming)
                written.append(incoming)
        return SimpleNamespace(data=copy.deepcopy(written), count=None)

    def _execute_insert(self):
        table = self.store.rows(self.table_name)
        written = []
        for incoming in copy.deepcopy(self.payload):
            incoming.setdefault("id", self.store.next_id())
            table.append(incoming)
            written.append(incoming)
        return SimpleNamespace(data=copy.deepcopy(written), count=None)

    def _execute_update(self):
        rows = self._matching()
        for row in rows:
            row.update(copy.deepcopy(self.payload))
        return SimpleNamespace(data=copy.deepcopy(rows), count=None)

    def _execute_delete(self):
        rows = self._matching()
        table = self.store.rows(self.table_name)
        self.store.tables[self.table_name] = [row for row in table if row not in rows]
        return SimpleNamespace(data=copy.deepcopy(rows), count=None)


class FakeSupabase:
    """Tables are lists of dict rows. ``failing_tables`` makes writes to a table raise."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failing_tables: Dict[str, Exception] = {}
        self.calls = []
        self._ids = 0

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def next_id(self) -> str:
        self._ids += 1
        return str(uuid.UUID(int=self._ids))

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


# Scripted catalog upstream

class FakeCatalog:
    """Serves category trees, listings and product details for any source config.

    ``listings`` maps a category id to its product ids, to a full listing
    payload (sources whose listings embed products) or to a list of pages
    (paged listings). Unknown listings and missing products behave like the
    real APIs: a listing 404s, the detail endpoint silently omits ids it does
    not know.
    ``fail(fragment, *errors)`` queues errors for URLs containing ``fragment``.
    """

    def __init__(self, tree=None, listings=None, products=None):
        self.tree = tree if tree is not None else []
        self.listings: Dict[str, Any] = listings or {}
        self.products: Dict[str, Dict[str, Any]] = products or {}
        self.urls: List[str] = []
        self.detail_requests: List[List[str]] = []
        self._queued: List[List[Any]] = []
        self.sessions_opened = 0

    def __call__(self, config):
        return self

    async def __aenter__(self):
        self.sessions_opened += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    def fail(self, fragment: str, *errors: Exception):
        self._queued.append([fragment, list(errors)])

    async def get_json(self, url: str, timeout: Optional[float] = None):
        self.urls.append(url)
        for fragment, errors in self._queued:
            if fragment in url and errors:
                raise errors.pop(0)

        if "/productsArray" in url:
            ids = parse_qs(urlparse(url).query)["productIds"][0].split(",")
            self.detail_requests.append(ids)
            return {"products": [copy.deepcopy(self.products[i]) for i in ids if i in self.products]}

        if "page-size=" in url:
            query = parse_qs(urlparse(url).query)
            pages = self.listings.get(query["categoryId"][0])
            page = int(query["page"][0])
            if pages is None or page > len(pages):
                raise CatalogNotFound(f"Not found: {url}", url=url, status=404)
            return copy.deepcopy(pages[page - 1])

        match = re.search(r"/category/([^/?]+)/product", url)
        if match:
            category_id = match.group(1)
            if category_id not in self.listings:
                raise CatalogNotFound(f"Not found: {url}", url=url, status=404)
            listing = self.listings[category_id]
            if isinstance(listing, dict):
                return copy.deepcopy(listing)
            return {"productIds": list(listing)}

        if "/category?" in url or "/categories?" in url:
            return {"categories": copy.deepcopy(self.tree)}

        raise CatalogNotFound(f"Not found: {url}", url=url, status=404)


# Payload builders

def make_color(color_id: str, *, reference: Optional[str] = "C0128022680002-I2025", price: Any = "129900",
               old_price: Any = None, catentry: Optional[str] = None, name: Optional[str] = None,
               image_url: Optional[str] = None, buyable: bool = True) -> Dict[str, Any]:
    color: Dict[str, Any] = {"id": color_id, "name": name or f"Color {color_id}"}
    if reference is not None:
        color["reference"] = reference
    if price is not None:
        size = {"name": "M", "price": price, "isBuyable": buyable}
        if old_price is not None:
            size["oldPrice"] = old_price
        color["sizes"] = [size]
    if catentry is not None:
        color["catentryId"] = catentry
    if image_url is not None:
        color["image"] = {"url": image_url}
    return color


def make_product(product_id: str, colors: List[Dict[str, Any]], name: str = "Basic Tee",
                 **extra) -> Dict[str, Any]:
    product = {"id": product_id, "name": name, "detail": {"colors": colors}}
    product.update(extra)
    return product


def category(category_id: str, name: str, children: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return {"id": category_id, "name": name, "subcategories": children or []}


def zara_color(color_id: str, variant_id: str, *, price: Any = 129900, availability: str = "in_stock",
               image_url: str = "https://static.zara.net/photos/w/{width}/a.jpg") -> Dict[str, Any]:
    return {
        "id": color_id,
        "productId": int(variant_id),
        "name": f"Color {color_id}",
        "price": price,
        "availability": availability,
        "xmedia": [{"url": image_url}],
    }


def zara_component(product_id: str, colors: List[Dict[str, Any]], name: str = "Oversize Shirt",
                   display_reference: Optional[str] = "4387/413/800") -> Dict[str, Any]:
    return {
        "type": "Product",
        "id": int(product_id),
        "name": name,
        "detail": {"displayReference": display_reference, "colors": colors},
        "seo": {"keyword": "oversize-shirt", "seoProductId": "321"},
    }


def zara_listing(*components: Dict[str, Any]) -> Dict[str, Any]:
    return {"productGroups": [{"elements": [
        {"commercialComponents": list(components)},
        {"commercialComponents": [{"type": "Banner", "id": 1}]},
    ]}]}


def hm_item(article_id: str, *, price: Any = 59.99, stock: str = "Available",
            name: str = "Cotton Tee") -> Dict[str, Any]:
    return {
        "id": article_id,
        "productName": name,
        "prices": [{"price": price}],
        "availability": {"stockState": stock},
        "swatches": [
            {"articleId": "9999999001", "colorName": "White", "colorCode": "01"},
            {"articleId": article_id, "colorName": "Black", "colorCode": "09",
             "productImage": f"https://image.hm.com/assets/{article_id}.jpg"},
        ],
        "url": f"/tr_tr/productpage.{article_id}.html",
    }


def hm_page(*items: Dict[str, Any], total_pages: int = 1) -> Dict[str, Any]:
    return {"plpList": {"productList": list(items)}, "pagination": {"totalPages": total_pages}}


# Fixtures

@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def source_configs(settings):
    return {config.source_id: config.with_overrides(**ZERO_DELAYS) for config in build_source_configs(settings)}


@pytest.fixture
def bershka(source_configs):
    return source_configs["bershka"]


@pytest.fixture
def stradivarius(source_configs):
    return source_configs["stradivarius"]


@pytest.fixture
def registry(source_configs, settings):
    return SourceRegistry(source_configs.values(), settings.RESOLVER_SOURCE_PRIORITY)


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def db(supabase):
    return CatalogDatabase(client=supabase)


@pytest.fixture
def tracker():
    return ProgressTracker(eviction_seconds=30.0)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def zara(source_configs):
    return source_configs["zara"]


@pytest.fixture
def hm():
    configs = build_source_configs(Settings(_env_file=None, **HM_SETTINGS))
    return next(config for config in configs if config.source_id == "hm").with_overrides(**ZERO_DELAYS)
