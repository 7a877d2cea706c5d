"""Tests for the loader engine: load-once, in-flight sharing, child backfill."""

from __future__ import annotations

import asyncio
import gc

import pytest

from shopcache.exceptions import (
    ChildLoadError,
    ConfigError,
    InvalidUsageError,
    NotFoundError,
    PayloadError,
    ServerError,
    UnknownResourceError,
)
from shopcache.sentinel import UNLOADED, is_unloaded


async def _until(condition, attempts: int = 200) -> None:
    """Yield to the event loop until *condition()* holds."""
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


# ---------------------------------------------------------------------------
# Flat collections
# ---------------------------------------------------------------------------


class TestCollectionLoad:
    @pytest.mark.asyncio
    async def test_end_to_end_products(self, cache, api) -> None:
        assert cache.all("products") is UNLOADED

        await cache.ensure("products")

        assert cache.all("products") == [{"id": 7, "title": "Mug"}]
        assert cache.by_id("products", 7) == {"id": 7, "title": "Mug"}
        assert cache.by_id("products", 99) is UNLOADED
        assert cache.ids("products") == [7]

    @pytest.mark.asyncio
    async def test_request_carries_shop_domain(self, cache, api) -> None:
        await cache.ensure("products")
        request = api.requests[0]
        assert request.method == "GET"
        assert str(request.url).startswith("https://app.example.com/api/products?")
        assert request.url.params["shop"] == "demo.myshopify.com"

    @pytest.mark.asyncio
    async def test_second_ensure_does_not_fetch(self, cache, api) -> None:
        await cache.ensure("products")
        await cache.ensure("products")
        assert api.count("/api/products") == 1

    @pytest.mark.asyncio
    async def test_empty_payload_counts_as_loaded(self, cache, api) -> None:
        api.routes["/api/collects"] = {"collects": []}
        await cache.ensure("collects")
        await cache.ensure("collects")
        assert cache.all("collects") == []
        assert api.count("/api/collects") == 1

    @pytest.mark.asyncio
    async def test_failed_load_leaves_slot_unloaded_and_retries(self, cache, api) -> None:
        api.failures["/api/products"] = 500
        with pytest.raises(ServerError):
            await cache.ensure("products")
        assert is_unloaded(cache.all("products"))

        del api.failures["/api/products"]
        await cache.ensure("products")
        assert cache.ids("products") == [7]
        assert api.count("/api/products") == 2

    @pytest.mark.asyncio
    async def test_not_found_maps_to_not_found_error(self, cache, api) -> None:
        with pytest.raises(NotFoundError):
            await cache.ensure("collects")
        assert is_unloaded(cache.all("collects"))

    @pytest.mark.asyncio
    async def test_missing_field_is_payload_error(self, cache, api) -> None:
        api.routes["/api/products"] = {"items": []}
        with pytest.raises(PayloadError):
            await cache.ensure("products")
        assert is_unloaded(cache.all("products"))

    @pytest.mark.asyncio
    async def test_parent_ids_rejected_for_flat_resource(self, cache) -> None:
        with pytest.raises(InvalidUsageError):
            await cache.ensure("products", [1])

    @pytest.mark.asyncio
    async def test_unknown_resource(self, cache) -> None:
        with pytest.raises(UnknownResourceError):
            await cache.ensure("orders")

    @pytest.mark.asyncio
    async def test_commit_notifies_subscribers(self, cache) -> None:
        seen = []
        cache.subscribe("products", lambda key, value: seen.append((key, value)))
        await cache.ensure("products")
        await cache.ensure("products")
        assert seen == [("products", [{"id": 7, "title": "Mug"}])]


# ---------------------------------------------------------------------------
# In-flight sharing
# ---------------------------------------------------------------------------


class TestConcurrentLoads:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, cache, api) -> None:
        api.gate = asyncio.Event()
        first = asyncio.create_task(cache.ensure("products"))
        second = asyncio.create_task(cache.ensure("products"))

        await _until(lambda: len(api.requests) == 1)
        assert cache.is_loading("products")
        for _ in range(10):
            await asyncio.sleep(0)
        assert len(api.requests) == 1

        api.gate.set()
        await asyncio.gather(first, second)

        assert api.count("/api/products") == 1
        assert cache.ids("products") == [7]
        assert not cache.is_loading("products")

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_the_failure(self, cache, api) -> None:
        api.gate = asyncio.Event()
        api.failures["/api/products"] = 503
        first = asyncio.create_task(cache.ensure("products"))
        second = asyncio.create_task(cache.ensure("products"))
        await _until(lambda: len(api.requests) == 1)

        api.gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(r, ServerError) for r in results)
        assert api.count("/api/products") == 1
        assert not cache.is_loading("products")

        api.gate = None
        del api.failures["/api/products"]
        await cache.ensure("products")
        assert api.count("/api/products") == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_fetch(self, cache, api) -> None:
        api.gate = asyncio.Event()
        first = asyncio.create_task(cache.ensure("products"))
        second = asyncio.create_task(cache.ensure("products"))
        await _until(lambda: len(api.requests) == 1)

        first.cancel()
        api.gate.set()
        await second

        assert first.cancelled()
        assert cache.ids("products") == [7]

    @pytest.mark.asyncio
    async def test_failure_after_sole_caller_cancelled_is_not_reported(self, cache, api) -> None:
        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            api.gate = asyncio.Event()
            api.failures["/api/products"] = 500
            caller = asyncio.create_task(cache.ensure("products"))
            await _until(lambda: len(api.requests) == 1)

            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller

            api.gate.set()
            await _until(lambda: not cache.is_loading("products"))
            for _ in range(5):
                await asyncio.sleep(0)
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reported == []
        assert is_unloaded(cache.all("products"))

    @pytest.mark.asyncio
    async def test_concurrent_child_loads_share_per_parent(self, cache, api) -> None:
        api.gate = asyncio.Event()
        first = asyncio.create_task(cache.ensure_children("articles", [1, 2]))
        second = asyncio.create_task(cache.ensure_children("articles", [2, 3]))
        await _until(lambda: len(api.requests) == 3)
        assert cache.is_loading("articles", 2)

        api.gate.set()
        await asyncio.gather(first, second)

        assert api.count("/api/blogs/1/articles") == 1
        assert api.count("/api/blogs/2/articles") == 1
        assert api.count("/api/blogs/3/articles") == 1


# ---------------------------------------------------------------------------
# Child collections
# ---------------------------------------------------------------------------


class TestChildLoad:
    @pytest.mark.asyncio
    async def test_non_numeric_parent_id_is_usage_error(self, cache, api) -> None:
        with pytest.raises(InvalidUsageError, match="abc"):
            await cache.ensure_children("articles", ["1", "abc"])
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_explicit_parent_ids(self, cache, api) -> None:
        await cache.ensure_children("articles", [1, 2])
        assert cache.child_for("articles", 1) == [{"id": 11, "blog_id": 1}]
        assert cache.child_for("articles", 2) == [{"id": 21, "blog_id": 2}]
        assert api.count("/api/blogs") == 0

    @pytest.mark.asyncio
    async def test_child_request_url(self, cache, api) -> None:
        await cache.ensure("articles", [1])
        request = api.requests[0]
        assert str(request.url).startswith("https://app.example.com/api/blogs/1/articles?")
        assert request.url.params["shop"] == "demo.myshopify.com"

    @pytest.mark.asyncio
    async def test_partial_backfill_fetches_only_missing_parents(self, cache, api) -> None:
        await cache.ensure_children("articles", [2])
        api.requests.clear()

        await cache.ensure_children("articles", [1, 2, 3])

        assert sorted(api.paths) == ["/api/blogs/1/articles", "/api/blogs/3/articles"]
        assert cache.child_for("articles", 3) == []

    @pytest.mark.asyncio
    async def test_string_and_numeric_ids_are_one_parent(self, cache, api) -> None:
        await cache.ensure_children("articles", ["1", 1, 1.0])
        assert api.paths == ["/api/blogs/1/articles"]
        assert cache.child_for("articles", "1") == cache.child_for("articles", 1)

    @pytest.mark.asyncio
    async def test_no_parents_means_no_requests(self, cache, api) -> None:
        await cache.ensure_children("articles", [])
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_omitted_ids_load_parent_collection_first(self, cache, api) -> None:
        await cache.ensure_children("articles")

        assert api.paths[0] == "/api/blogs"
        assert cache.ids("blogs") == [1, 2]
        assert sorted(a["id"] for a in cache.child_all("articles")) == [11, 21]

    @pytest.mark.asyncio
    async def test_omitted_ids_with_failed_parent_load(self, cache, api) -> None:
        api.failures["/api/blogs"] = 500
        with pytest.raises(ServerError):
            await cache.ensure_children("articles")
        assert cache.child_all("articles") == []

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_successes(self, cache, api) -> None:
        api.failures["/api/blogs/2/articles"] = 500

        with pytest.raises(ChildLoadError) as exc_info:
            await cache.ensure_children("articles", [1, 2])

        assert cache.child_for("articles", 1) == [{"id": 11, "blog_id": 1}]
        assert cache.child_for("articles", 2) is UNLOADED
        assert list(exc_info.value.failures) == [2]
        assert isinstance(exc_info.value.failures[2], ServerError)
        assert exc_info.value.succeeded == [1]

    @pytest.mark.asyncio
    async def test_retry_after_partial_failure_fetches_only_failed(self, cache, api) -> None:
        api.failures["/api/blogs/2/articles"] = 500
        with pytest.raises(ChildLoadError):
            await cache.ensure_children("articles", [1, 2])

        del api.failures["/api/blogs/2/articles"]
        await cache.ensure_children("articles", [1, 2])

        assert api.count("/api/blogs/1/articles") == 1
        assert api.count("/api/blogs/2/articles") == 2
        assert cache.child_for("articles", 2) == [{"id": 21, "blog_id": 2}]

    @pytest.mark.asyncio
    async def test_unknown_child_collection(self, cache) -> None:
        with pytest.raises(UnknownResourceError):
            await cache.ensure_children("products", [1])


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class TestAssetLoad:
    @pytest.mark.asyncio
    async def test_settings_data_is_decoded(self, cache, api) -> None:
        await cache.ensure("settingsData")
        assert cache.all("settingsData") == {"current": "Default"}

    @pytest.mark.asyncio
    async def test_asset_query(self, cache, api) -> None:
        await cache.ensure("settingsData")
        request = api.requests[0]
        assert request.url.path == "/api/themes/42/assets"
        params = request.url.params
        assert params["asset[key]"] == "config/settings_data.json"
        assert params["fields"] == "value"
        assert params["shop"] == "demo.myshopify.com"

    @pytest.mark.asyncio
    async def test_undecodable_asset_is_payload_error(self, cache, api) -> None:
        api.routes["/api/themes/42/assets"] = {"asset": {"value": "not json"}}
        with pytest.raises(PayloadError):
            await cache.ensure("settingsData")
        assert is_unloaded(cache.all("settingsData"))

    @pytest.mark.asyncio
    async def test_missing_theme_id(self, shop_config, api) -> None:
        from shopcache.cache import ShopCache

        config = shop_config.model_copy(update={"theme_id": None})
        async with ShopCache(config, transport=api.transport()) as cache:
            with pytest.raises(ConfigError):
                await cache.ensure("settingsData")
        assert api.requests == []


class TestEnsureAll:
    @pytest.mark.asyncio
    async def test_loads_every_flat_resource(self, cache, api) -> None:
        api.routes["/api/collects"] = {"collects": []}
        api.routes["/api/shop"] = {"shop": {"id": 5, "name": "Demo"}}

        await cache.ensure_all()

        assert cache.all("shop") == {"id": 5, "name": "Demo"}
        assert cache.all("settingsData") == {"current": "Default"}
        assert sorted(api.paths) == [
            "/api/blogs",
            "/api/collects",
            "/api/products",
            "/api/shop",
            "/api/themes/42/assets",
        ]
