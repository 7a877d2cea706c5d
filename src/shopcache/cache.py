"""The :class:`ShopCache` facade: one object per storefront session.

Wires a :class:`~shopcache.registry.ResourceRegistry`, a
:class:`~shopcache.store.StoreAdapter`, a
:class:`~shopcache.loader.LoaderEngine` and
:class:`~shopcache.accessors.Accessors` together over a single
:class:`~shopcache.client.ShopClient`.

Besides the resource-name based API (``ensure("products")``,
``by_id("products", 7)``), the facade exposes every generated accessor
name through :meth:`ShopCache.operation`::

    load_articles = cache.operation("loadArticles")
    await load_articles([1, 2])
    cache.operation("articlesForBlog")(1)

The operation table is built once in the constructor from
:meth:`~shopcache.registry.ResourceRegistry.derived_names`.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Callable, Iterable, Optional

import httpx

from shopcache.accessors import Accessors
from shopcache.client import ShopClient
from shopcache.loader import LoaderEngine
from shopcache.models import ShopConfig
from shopcache.registry import DEFAULT_REGISTRY, ResourceRegistry
from shopcache.store import ParentId, StateBackend, StoreAdapter, Subscriber


class ShopCache:
    """Load-once, observable cache over the storefront app backend.

    Use as an async context manager; the HTTP client is opened on entry
    and closed on exit when the cache created it.

    Args:
        config: Connection settings.
        registry: Declared resources. Defaults to the storefront set
            (``products``, ``collects``, ``blogs``, ``shop``,
            ``settingsData``, ``articles`` per blog).
        backend: Reactive container to commit into. A fresh
            :class:`~shopcache.store.ReactiveStore` by default.
        client: An already-configured client. When omitted a
            :class:`~shopcache.client.ShopClient` is created from *config*.
        transport: Optional :mod:`httpx` transport for the created client.

    Example::

        async with ShopCache(config) as cache:
            await cache.ensure("blogs")
            await cache.ensure_children("articles")
            cache.child_all("articles")
    """

    def __init__(
        self,
        config: ShopConfig,
        registry: Optional[ResourceRegistry] = None,
        backend: Optional[StateBackend] = None,
        client: Optional[ShopClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._registry = registry if registry is not None else DEFAULT_REGISTRY
        self._owns_client = client is None
        self._client = client if client is not None else ShopClient(config, transport=transport)
        self._store = StoreAdapter(self._registry, backend)
        self._loader = LoaderEngine(self._registry, self._store, self._client.http_get, config)
        self._accessors = Accessors(self._registry, self._store)
        self._operations = self._build_operations()

    async def __aenter__(self) -> ShopCache:
        if self._owns_client:
            await self._client.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._owns_client:
            await self._client.__aexit__(*args)

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    @property
    def store(self) -> StoreAdapter:
        return self._store

    @property
    def config(self) -> ShopConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Loaders
    # ------------------------------------------------------------------ #

    async def ensure(self, name: str, parent_ids: Optional[Iterable[ParentId]] = None) -> None:
        await self._loader.ensure(name, parent_ids)

    async def ensure_children(
        self,
        child_name: str,
        parent_ids: Optional[Iterable[ParentId]] = None,
    ) -> None:
        await self._loader.ensure_children(child_name, parent_ids)

    async def ensure_all(self) -> None:
        await self._loader.ensure_all()

    def is_loading(self, name: str, parent_id: Optional[ParentId] = None) -> bool:
        return self._loader.is_loading(name, parent_id)

    async def load_access_token(self) -> Any:
        return await self._client.load_access_token()

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    def all(self, name: str) -> Any:
        return self._accessors.all(name)

    def by_id(self, name: str, entity_id: Any) -> Any:
        return self._accessors.by_id(name, entity_id)

    def ids(self, name: str) -> list[Any]:
        return self._accessors.ids(name)

    def child_all(self, child_name: str) -> list[Any]:
        return self._accessors.child_all(child_name)

    def child_for(self, child_name: str, parent_id: ParentId) -> Any:
        return self._accessors.child_for(child_name, parent_id)

    def subscribe(self, name: str, callback: Subscriber) -> Callable[[], None]:
        """Call *callback(name, value)* after every commit to *name*."""
        return self._store.subscribe(name, callback)

    # ------------------------------------------------------------------ #
    # Generated names
    # ------------------------------------------------------------------ #

    @property
    def operation_names(self) -> list[str]:
        return sorted(self._operations)

    def operation(self, derived_name: str) -> Callable[..., Any]:
        """Return the callable behind a generated name such as ``productIds``.

        Raises:
            UnknownResourceError: If no descriptor produces *derived_name*.
        """
        self._registry.resolve(derived_name)
        return self._operations[derived_name]

    def _build_operations(self) -> dict[str, Callable[..., Any]]:
        accessors = self._accessors
        table: dict[str, Callable[..., Any]] = {}
        for derived, (resource, op) in self._registry.derived_names().items():
            if op == "ensure":
                fn: Callable[..., Any] = partial(self._loader.ensure, resource)
            elif op == "set":
                if self._registry.is_keyed(resource):
                    fn = partial(self._store.set_child, resource)
                else:
                    fn = partial(self._store.set, resource)
            elif op == "all":
                fn = partial(accessors.all, resource)
            elif op == "by_id":
                fn = partial(accessors.by_id, resource)
            elif op == "ids":
                fn = partial(accessors.ids, resource)
            elif op == "child_for":
                fn = partial(accessors.child_for, resource)
            else:  # pragma: no cover
                raise AssertionError(f"Unhandled derived operation {op!r}")
            table[derived] = fn
        return table
