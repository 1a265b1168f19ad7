"""
HTTP and WebSocket surface tests with an injected engine context.
"""

import pytest
from fastapi.testclient import TestClient

import main
from context import EngineContext
from pipeline.canonicalizer import canonicalize_many
from routers import images

from conftest import make_color, make_product

USER = {"X-User-Id": "user-1"}
TEE_URL = "https://www.bershka.com/tr/basic-tee-c0p100.html"


@pytest.fixture
def engine(settings, db, registry, tracker, catalog):
    settings.PROGRESS_STREAM_CLOSE_DELAY = 0.0
    settings.TRACKING_MAX_PER_USER = 2
    return EngineContext.build(settings, db, registry=registry, tracker=tracker, client_factory=catalog)


@pytest.fixture
def client(engine):
    main.app.state.engine = engine
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.state.engine = None


@pytest.fixture
def stocked(engine, bershka, supabase):
    raws = [
        make_product("100", [make_color("800", catentry="5001"), make_color("401", catentry="5002")]),
        make_product("101", [make_color("800")]),
        make_product("102", [make_color("800")]),
    ]
    records = canonicalize_many(raws, bershka).records
    rows = []
    for record in records:
        row = record.to_row()
        row["unique_key"] = row["canonical_id"]
        rows.append(row)
    supabase.rows("catalog_products").extend(rows)
    return records


class TestRoot:
    def test_root_and_health(self, client):
        assert client.get("/").json()["status"] == "operational"
        health = client.get("/health").json()
        assert health["status"] == "healthy"
        assert health["services"]["sources"] == ["bershka", "stradivarius", "zara"]


class TestScrapingRoutes:
    """Manual triggers and job queries"""

    def test_sources(self, client):
        sources = client.get("/api/scraping/sources").json()["sources"]
        assert [s["source_id"] for s in sources] == ["bershka", "stradivarius", "zara"]
        assert sources[1]["uniqueness_key"] == "by-reference"
        assert sources[0]["stored_products"] == 0
        assert client.get("/api/scraping/sources/bershka/categories").json()["total"] == 0
        assert client.get("/api/scraping/sources/mango/categories").status_code == 404

    def test_unknown_source_trigger(self, client):
        assert client.post("/api/scraping/mango").status_code == 404

    def test_trigger_returns_queryable_job(self, client):
        response = client.post("/api/scraping/bershka", params={"mode": "details"})

        assert response.status_code == 202
        body = response.json()
        assert body["mode"] == "details"
        assert body["progress_stream"] == f"/ws/jobs/{body['job_id']}"
        assert client.get(f"/api/scraping/jobs/{body['job_id']}").status_code == 200

    def test_cancel_without_running_job(self, client):
        assert client.delete("/api/scraping/bershka").status_code == 404
        assert client.delete("/api/scraping/mango").status_code == 404

    def test_job_queries(self, client, tracker):
        tracker.start("job-1", total_items=40)
        tracker.increment_processed("job-1", 10)

        jobs = client.get("/api/scraping/jobs").json()
        assert jobs["total"] == 1
        job = client.get("/api/scraping/jobs/job-1").json()
        assert job["percentage"] == 25
        assert job["status"] == "running"
        assert client.get("/api/scraping/jobs/nope").status_code == 404


class TestTrackingRoutes:
    """Tracking CRUD and typed errors"""

    def test_requires_user_header(self, client):
        assert client.get("/api/tracking").status_code == 422

    def test_add_list_remove(self, client, stocked):
        created = client.post("/api/tracking", json={"url": f"{TEE_URL}?colorId=401"}, headers=USER)
        assert created.status_code == 201
        assert created.json()["canonical_id"] == "5002"

        listed = client.get("/api/tracking", headers=USER).json()
        assert [item["canonical_id"] for item in listed["items"]] == ["5002"]

        tracking_id = created.json()["id"]
        assert client.get(f"/api/tracking/{tracking_id}", headers=USER).json()["source"] == "bershka"
        assert client.get(f"/api/tracking/{tracking_id}", headers={"X-User-Id": "user-2"}).status_code == 404
        patched = client.patch(f"/api/tracking/{tracking_id}", json={"stock_alert": True}, headers=USER)
        assert patched.json()["stock_alert"] is True

        assert client.delete(f"/api/tracking/{tracking_id}", headers=USER).json()["deleted"] is True
        assert client.get("/api/tracking", headers=USER).json()["items"] == []

    def test_capacity_error(self, client, stocked):
        client.post("/api/tracking", json={"url": TEE_URL}, headers=USER)
        client.post("/api/tracking", json={"url": "https://www.bershka.com/tr/x-c0p101.html"}, headers=USER)

        response = client.post("/api/tracking", json={"url": "https://www.bershka.com/tr/x-c0p102.html"}, headers=USER)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "capacity_exceeded"
        assert client.get("/api/tracking/stats", headers=USER).json()["tracked"] == 2

    @pytest.mark.parametrize("link, status, code", [
        ("https://shop.mango.com/tr/x_1.html", 400, "unsupported_source"),
        (f"{TEE_URL}?colorId=999", 409, "color_unavailable"),
        ("https://www.bershka.com/tr/x-c0p404.html", 404, "not_found"),
    ])
    def test_resolver_errors(self, client, stocked, link, status, code):
        response = client.post("/api/tracking", json={"url": link}, headers=USER)
        assert response.status_code == status
        assert response.json()["detail"]["error"] == code

    def test_unknown_tracking_id(self, client):
        response = client.delete("/api/tracking/missing", headers=USER)
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "tracking_not_found"

    def test_resolve_only(self, client, stocked):
        response = client.post("/api/tracking/resolve", json={"url": "1280/226/800"})
        assert response.status_code == 200
        assert response.json()["source"] == "bershka"
        assert client.get("/api/tracking", headers=USER).json()["total"] == 0


    def test_list_includes_current_product(self, client, stocked):
        client.post("/api/tracking", json={"url": TEE_URL}, headers=USER)
        item = client.get("/api/tracking", headers=USER).json()["items"][0]
        assert item["product"]["canonical_id"] == "5001"
        assert item["product"]["price"] == 129900

    def test_alert_candidates(self, client, stocked):
        client.post("/api/tracking", json={"url": TEE_URL, "price_alert_threshold": 150000}, headers=USER)
        client.post("/api/tracking", json={"url": "https://www.bershka.com/tr/x-c0p101.html", "stock_alert": True},
                    headers={"X-User-Id": "user-2"})

        everything = client.get("/api/tracking/alerts").json()
        assert everything["alert_type"] == "all"
        assert everything["total"] == 2

        price = client.get("/api/tracking/alerts", params={"type": "price"}).json()
        assert [(c["user_id"], c["alert_reasons"]) for c in price["candidates"]] == [("user-1", ["price"])]
        assert client.get("/api/tracking/alerts", params={"type": "sale"}).status_code == 422


class TestProductRoutes:
    """Catalog browsing over the canonical store"""

    def test_list_and_paging(self, client, stocked):
        body = client.get("/api/products", params={"source": "bershka", "limit": 3}).json()
        assert body["total"] == 4
        assert body["pages"] == 2
        assert len(body["products"]) == 3
        assert client.get("/api/products", params={"page": 2, "limit": 3}).json()["products"]

    def test_invalid_queries(self, client):
        assert client.get("/api/products", params={"sort_by": "unique_key"}).status_code == 400
        assert client.get("/api/products", params={"order": "sideways"}).status_code == 422
        assert client.get("/api/products", params={"limit": 500}).status_code == 422
        assert client.get("/api/products", params={"source": "mango"}).status_code == 404

    def test_search(self, client, stocked):
        body = client.get("/api/products/search", params={"q": "basic"}).json()
        assert body["total"] == 4
        assert client.get("/api/products/search", params={"q": "x"}).status_code == 422

    def test_stats(self, client, stocked):
        stats = client.get("/api/products/stats", params={"source": "bershka"}).json()
        assert stats["total_products"] == 4
        assert stats["in_stock"] == 4
        assert stats["min_price"] == 129900

    def test_single_product(self, client, stocked):
        assert client.get("/api/products/bershka/5002").json()["color_id"] == "401"
        assert client.get("/api/products/bershka/9999").status_code == 404

    def test_stale_cleanup(self, client, stocked, supabase):
        supabase.rows("catalog_products")[0]["last_updated"] = "2020-01-01T00:00:00+00:00"

        body = client.delete("/api/products/stale", params={"days_old": 30}).json()

        assert body["deleted"] == 1
        assert len(supabase.rows("catalog_products")) == 3
        assert client.delete("/api/products/stale", params={"days_old": 0}).status_code == 422

class TestImageRelay:
    """Allow-listed passthrough"""

    def test_foreign_host_rejected(self, client):
        response = client.get("/api/images", params={"url": "https://evil.example.com/a.jpg"})
        assert response.status_code == 400

    def test_relays_with_cache_header(self, client, monkeypatch):
        seen = {}

        async def fake_fetch(url, referer, timeout):
            seen.update(url=url, referer=referer)
            return b"\x89PNG", "image/png"

        monkeypatch.setattr(images, "fetch_image", fake_fetch)
        response = client.get("/api/images", params={"url": "https://static.bershka.net/4/photos/a.jpg"})

        assert response.status_code == 200
        assert response.content == b"\x89PNG"
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "public, max-age=86400"
        assert seen["referer"] == "https://www.bershka.com/"

    def test_upstream_failure(self, client, monkeypatch):
        import aiohttp

        async def failing_fetch(url, referer, timeout):
            raise aiohttp.ClientConnectionError("reset")

        monkeypatch.setattr(images, "fetch_image", failing_fetch)
        response = client.get("/api/images", params={"url": "https://static.bershka.net/4/photos/a.jpg"})
        assert response.status_code == 502


class TestProgressStream:
    """WebSocket job streams"""

    def test_finished_job_stream_sends_snapshot(self, client, tracker):
        tracker.start("job-1", total_items=4)
        tracker.increment_processed("job-1", 4)
        tracker.complete("job-1", total_saved=4)

        with client.websocket_connect("/ws/jobs/job-1") as websocket:
            message = websocket.receive_json()

        assert message["type"] == "job_progress"
        assert message["data"]["status"] == "completed"
        assert message["data"]["percentage"] == 100

    def test_unknown_job(self, client):
        with client.websocket_connect("/ws/jobs/missing") as websocket:
            assert websocket.receive_json()["type"] == "job_not_found"
