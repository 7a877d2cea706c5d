"""Shared test fixtures for shopcache.

Provides a fake app backend served through :class:`httpx.MockTransport`,
a ready-to-use :class:`~shopcache.cache.ShopCache` wired to it, isolated
configuration directories, and output state management.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio

from shopcache.cache import ShopCache
from shopcache.models import RequestConfig, ShopConfig
from shopcache.output import OutputFormat, OutputManager, reset_output, set_output


APP_HOST = "https://app.example.com"


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------


class FakeApi:
    """Scriptable stand-in for the app backend.

    ``routes`` maps a URL path to the JSON body served for it,
    ``failures`` maps a path to an error status. While ``gate`` is set
    and not yet released, every request blocks, which lets tests hold
    several loads in flight at once.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.failures: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.gate: Optional[asyncio.Event] = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        path = request.url.path
        if path in self.failures:
            return httpx.Response(self.failures[path], json={"errors": "Internal Server Error"})
        if path not in self.routes:
            return httpx.Response(404, json={"errors": "Not Found"})
        return httpx.Response(200, json=self.routes[path])

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    @property
    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def api() -> FakeApi:
    fake = FakeApi()
    fake.routes["/api/products"] = {"products": [{"id": 7, "title": "Mug"}]}
    fake.routes["/api/blogs"] = {"blogs": [{"id": 1, "title": "News"}, {"id": 2, "title": "Guides"}]}
    fake.routes["/api/blogs/1/articles"] = {"articles": [{"id": 11, "blog_id": 1}]}
    fake.routes["/api/blogs/2/articles"] = {"articles": [{"id": 21, "blog_id": 2}]}
    fake.routes["/api/blogs/3/articles"] = {"articles": []}
    fake.routes["/api/themes/42/assets"] = {
        "asset": {"key": "config/settings_data.json", "value": '{"current": "Default"}'}
    }
    return fake


@pytest.fixture
def shop_config() -> ShopConfig:
    return ShopConfig(
        app_host=APP_HOST,
        shop="demo",
        theme_id="42",
        request=RequestConfig(timeout=5),
    )


@pytest_asyncio.fixture
async def cache(shop_config: ShopConfig, api: FakeApi):
    """An open ShopCache over the default registry, talking to ``api``."""
    async with ShopCache(shop_config, transport=api.transport()) as c:
        yield c


# ---------------------------------------------------------------------------
# Output state
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests():
    """Install a plain, verbose manager so loader debug lines are exercised."""
    set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True))
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG dirs and the working directory at *tmp_path* and clear SHOPIFY_* vars."""
    monkeypatch.setattr("shopcache.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ["SHOPIFY_APP_HOST", "SHOPIFY_APP_SHOP", "SHOPIFY_THEME_ID"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
