"""
Tests for category tree flattening and identity collection.
"""

import pytest

from config.sources import CategoryTreeShape
from database.client import CATEGORIES_TABLE, IDENTITIES_TABLE
from database.models import CategoryNode
from pipeline.discovery import (
    CategoryDiscovery,
    extract_listing_ids,
    flatten_category_tree,
    flatten_zara_categories,
    hm_listing_products,
)
from utils.errors import CatalogRequestError, RetryableCatalogError, RunCancelled, StoreWriteError

from conftest import category, hm_item, hm_page, zara_color, zara_component, zara_listing

TREE = [
    category("1", "Woman", [
        category("11", "Jeans"),
        category("12", "Landing Summer", [category("121", "Hidden")]),
        category("13", "Tops", [category("131", "T-Shirts")]),
    ]),
    category("2", "Man"),
    category("3", "UGC Looks"),
]


def nodes(source, *ids):
    return [CategoryNode(source=source, category_id=i, name=i, path=f"/{i}") for i in ids]


class TestFlattenCategoryTree:
    """Tree flattening rules"""

    def test_leaves_only_and_marketing_nodes_dropped(self, bershka):
        categories = flatten_category_tree({"categories": TREE}, bershka)
        assert [(c.category_id, c.path) for c in categories] == [
            ("11", "/Woman/Jeans"),
            ("131", "/Woman/Tops/T-Shirts"),
            ("2", "/Man"),
        ]

    def test_all_nodes_shape(self, bershka):
        config = bershka.with_overrides(category_tree_shape=CategoryTreeShape.ALL_NODES)
        categories = flatten_category_tree({"categories": TREE}, config)
        assert [c.category_id for c in categories] == ["1", "11", "13", "131", "2"]

    def test_duplicate_nodes_kept_once(self, bershka):
        tree = [category("1", "A", [category("9", "X")]), category("2", "B", [category("9", "X")])]
        assert [c.category_id for c in flatten_category_tree(tree, bershka)] == ["9"]

    def test_listing_ids(self):
        assert extract_listing_ids({"productIds": [1, 2]}) == ["1", "2"]
        assert extract_listing_ids({"products": [{"id": 5}, {"name": "no id"}]}) == ["5"]
        assert extract_listing_ids(None) == []


ZARA_TREE = [
    {"id": 1, "name": "KADIN", "subcategories": [
        {"id": 11, "name": "GÖMLEK", "redirectCategoryId": 1217, "seo": {"keyword": "kadin-gomlek"}},
        {"id": 12, "name": "ÇOK SATANLAR", "redirectCategoryId": 1300, "seo": {"keyword": "cok-satanlar"}},
        {"id": 13, "name": "DIVIDER"},
        {"id": 14, "name": "KOLEKSİYON", "redirectCategoryId": 1400},
    ]},
    {"id": 2, "name": "ERKEK", "subcategories": [
        {"id": 21, "name": "GÖMLEK", "redirectCategoryId": 1217, "seo": {"keyword": "erkek-gomlek"}},
        {"id": 22, "name": "PANTOLON", "redirectCategoryId": 2201, "seo": {"keyword": "erkek-pantolon"}},
    ]},
]


class TestListingSourceCategories:
    """Category trees and pages of sources whose listings carry products"""

    def test_zara_redirect_ids_are_listing_ids(self, zara):
        categories = flatten_zara_categories({"categories": ZARA_TREE}, zara)
        assert [(c.category_id, c.path) for c in categories] == [
            ("1217", "/KADIN/GÖMLEK"),
            ("2201", "/ERKEK/PANTOLON"),
        ]

    async def test_zara_tree_request(self, zara, catalog):
        catalog.tree = ZARA_TREE
        categories = await CategoryDiscovery(zara, catalog).discover_categories()
        assert len(categories) == 2
        assert catalog.urls == ["https://www.zara.com/tr/tr/categories?categoryId=2527573&categorySeoId=2641&ajax=true"]

    async def test_hm_categories_are_configured(self, hm, catalog):
        categories = await CategoryDiscovery(hm, catalog).discover_categories()
        assert [(c.category_id, c.name) for c in categories] == [("ladies_tops", "Tops"), ("ladies_dresses", "Dresses")]
        assert catalog.urls == []

    def test_hm_article_reshaped(self):
        product = hm_listing_products(hm_page(hm_item("1234567001")))[0]
        assert product["id"] == "1234567001"
        assert product["name"] == "Cotton Tee"
        assert product["detail"]["colors"] == [{
            "id": "09",
            "name": "Black",
            "price": 59.99,
            "availability": "Available",
            "image": {"url": "https://image.hm.com/assets/1234567001.jpg"},
        }]
        assert hm_listing_products(None) == []


class TestDiscoverCategories:
    """Category persistence and deactivation"""

    async def test_persists_and_deactivates_stale(self, bershka, catalog, db, supabase):
        supabase.rows(CATEGORIES_TABLE).append({
            "source": "bershka", "category_id": "old", "name": "Old", "path": "/Old", "is_active": True,
        })
        catalog.tree = TREE

        categories = await CategoryDiscovery(bershka, catalog, db).discover_categories()

        assert len(categories) == 3
        rows = {row["category_id"]: row for row in supabase.rows(CATEGORIES_TABLE)}
        assert rows["old"]["is_active"] is False
        assert all(rows[c.category_id]["is_active"] for c in categories)


class TestCollectIdentities:
    """Listing requests, dedup, 404 handling and checkpoints"""

    async def test_identities_are_deduplicated(self, bershka, catalog, db, supabase):
        """C1={p1,p2}, C2={p2,p3} -> {p1,p2,p3}"""
        catalog.listings = {"C1": ["p1", "p2"], "C2": ["p2", "p3"]}
        discovery = CategoryDiscovery(bershka, catalog, db)

        result = await discovery.collect_identities(nodes("bershka", "C1", "C2"))

        assert sorted(result.identities) == ["p1", "p2", "p3"]
        assert result.total_listed == 4
        assert result.duplicate_identities == 1
        assert result.unique_identities <= result.total_listed
        assert result.identity_categories["p2"] == {"C1", "C2"}
        stored = {row["product_id"]: row for row in supabase.rows(IDENTITIES_TABLE)}
        assert stored["p2"]["categories"] == ["C1", "C2"]
        assert stored["p1"]["is_processed"] is False

    async def test_missing_category_counts_as_empty(self, bershka, catalog):
        catalog.listings = {"C1": ["p1"]}
        result = await CategoryDiscovery(bershka, catalog).collect_identities(nodes("bershka", "C1", "C404"))

        assert result.successful_categories == 2
        assert result.empty_categories == 1
        assert result.failed_categories == 0
        assert sum(1 for url in catalog.urls if "/category/C404/" in url) == 1

    async def test_failed_category_is_isolated(self, bershka, catalog):
        catalog.listings = {"C1": ["p1"], "C2": ["p2"], "C3": ["p3"]}
        catalog.fail("/category/C2/", CatalogRequestError("HTTP 403", status=403))

        result = await CategoryDiscovery(bershka, catalog).collect_identities(nodes("bershka", "C1", "C2", "C3"))

        assert result.failed_categories == 1
        assert result.failures[0]["category_id"] == "C2"
        assert sorted(result.identities) == ["p1", "p3"]

    async def test_retryable_listing_is_retried(self, bershka, catalog):
        catalog.listings = {"C1": ["p1"]}
        catalog.fail("/category/C1/", RetryableCatalogError("HTTP 503"), RetryableCatalogError("timeout"))

        result = await CategoryDiscovery(bershka, catalog).collect_identities(nodes("bershka", "C1"))

        assert result.identities == ["p1"]
        assert sum(1 for url in catalog.urls if "/category/C1/" in url) == 3

    async def test_checkpoints_every_n_categories(self, bershka, catalog, db, supabase):
        config = bershka.with_overrides(checkpoint_every=2)
        catalog.listings = {f"C{i}": [f"p{i}"] for i in range(5)}

        result = await CategoryDiscovery(config, catalog, db).collect_identities(
            nodes("bershka", *catalog.listings)
        )

        # after categories 2 and 4, then the final flush
        assert result.checkpoints == 3
        assert len(supabase.rows(IDENTITIES_TABLE)) == 5

    async def test_failed_checkpoint_is_retried_later(self, bershka, catalog, db, supabase, monkeypatch):
        config = bershka.with_overrides(checkpoint_every=1)
        catalog.listings = {"C1": ["p1"], "C2": ["p2"]}
        original = db.checkpoint_identities
        calls = []

        async def flaky(source, mapping):
            calls.append(sorted(mapping))
            if len(calls) == 1:
                raise StoreWriteError("store unavailable")
            return await original(source, mapping)

        monkeypatch.setattr(db, "checkpoint_identities", flaky)
        await CategoryDiscovery(config, catalog, db).collect_identities(nodes("bershka", "C1", "C2"))

        assert calls == [["p1"], ["p1", "p2"]]
        assert sorted(row["product_id"] for row in supabase.rows(IDENTITIES_TABLE)) == ["p1", "p2"]

    async def test_cancellation_between_categories(self, bershka, catalog):
        catalog.listings = {"C1": ["p1"], "C2": ["p2"]}
        seen = []

        def should_stop():
            return len(seen) >= 1

        with pytest.raises(RunCancelled):
            await CategoryDiscovery(bershka, catalog).collect_identities(
                nodes("bershka", "C1", "C2"), on_category=seen.append, should_stop=should_stop
            )
        assert [c.category_id for c in seen] == ["C1"]

    async def test_zara_listing_payloads_are_kept(self, zara, catalog):
        shirt = zara_component("9001", [zara_color("800", "55501")])
        catalog.listings = {
            "1217": zara_listing(shirt),
            "2201": zara_listing(shirt, zara_component("9002", [zara_color("401", "55601")])),
        }

        result = await CategoryDiscovery(zara, catalog).collect_identities(nodes("zara", "1217", "2201"))

        assert sorted(result.identities) == ["9001", "9002"]
        assert result.identity_categories["9001"] == {"1217", "2201"}
        assert result.payloads["9002"]["detail"]["colors"][0]["productId"] == 55601
        assert catalog.detail_requests == []

    async def test_hm_pages_are_followed(self, hm, catalog):
        catalog.listings = {"ladies_tops": [
            hm_page(hm_item("1000000001"), hm_item("1000000002"), total_pages=2),
            hm_page(hm_item("1000000003"), total_pages=2),
        ]}

        result = await CategoryDiscovery(hm, catalog).collect_identities(nodes("hm", "ladies_tops"))

        assert result.identities == ["1000000001", "1000000002", "1000000003"]
        assert [url for url in catalog.urls if "page=2&" in url]
        assert all("page-size=2" in url for url in catalog.urls)

    async def test_failed_later_page_keeps_earlier_pages(self, hm, catalog):
        catalog.listings = {"ladies_tops": [
            hm_page(hm_item("1000000001"), total_pages=3),
            hm_page(hm_item("1000000002"), total_pages=3),
            hm_page(hm_item("1000000003"), total_pages=3),
        ]}
        catalog.fail("page=2&", CatalogRequestError("HTTP 403", status=403))

        result = await CategoryDiscovery(hm, catalog).collect_identities(nodes("hm", "ladies_tops"))

        assert result.identities == ["1000000001"]
        assert result.failed_categories == 0
        assert not [url for url in catalog.urls if "page=3&" in url]

    async def test_page_count_is_capped(self, hm, catalog):
        config = hm.with_overrides(max_pages=1)
        catalog.listings = {"ladies_tops": [
            hm_page(hm_item("1000000001"), total_pages=2),
            hm_page(hm_item("1000000002"), total_pages=2),
        ]}

        result = await CategoryDiscovery(config, catalog).collect_identities(nodes("hm", "ladies_tops"))

        assert result.identities == ["1000000001"]
