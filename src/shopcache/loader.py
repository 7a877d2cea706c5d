"""Load-once fetchers derived from resource descriptors.

:class:`LoaderEngine` turns each descriptor in a
:class:`~shopcache.registry.ResourceRegistry` into an "ensure loaded"
coroutine:

* **Collections and assets** -- :meth:`LoaderEngine.ensure` returns at
  once when the slot already holds a value. Otherwise it builds the
  request URL, fetches, unwraps the payload and commits it.
* **Child collections** -- :meth:`LoaderEngine.ensure_children` skips
  every parent whose entry is already loaded and fetches the rest in
  parallel. Each success is committed on its own, so one parent's
  failure never rolls back another's.

Only successful loads write to the store. A failed load leaves the slot
at :data:`~shopcache.sentinel.UNLOADED`, so calling ``ensure`` again
retries it.

Concurrent callers share work: while a fetch for a slot (or for one
parent's entry) is running, it is kept in an in-flight table and later
callers await that same task instead of issuing a second request.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Hashable, Iterable, Optional

from shopcache.accessors import collection_ids
from shopcache.client import HttpGet, asset_url, child_url, collection_url
from shopcache.exceptions import ChildLoadError, InvalidUsageError, PayloadError
from shopcache.models import (
    AssetDescriptor,
    ChildCollectionDescriptor,
    CollectionDescriptor,
    ShopConfig,
)
from shopcache.output import get_output
from shopcache.registry import ResourceRegistry
from shopcache.sentinel import is_unloaded
from shopcache.store import ParentId, StoreAdapter, normalize_id


class LoaderEngine:
    """Derives and runs the loaders for every declared resource.

    Args:
        registry: Declared resources.
        store: Adapter the loaders check and commit to.
        http_get: Transport coroutine, usually
            :meth:`~shopcache.client.ShopClient.http_get`.
        config: Supplies the app host, theme id, global query parameters
            and the credentials flag.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        store: StoreAdapter,
        http_get: HttpGet,
        config: ShopConfig,
    ) -> None:
        self._registry = registry
        self._store = store
        self._http_get = http_get
        self._config = config
        self._inflight: dict[Hashable, asyncio.Task] = {}

    # ------------------------------------------------------------------ #
    # Public loaders
    # ------------------------------------------------------------------ #

    async def ensure(self, name: str, parent_ids: Optional[Iterable[ParentId]] = None) -> None:
        """Make sure resource *name* is loaded.

        For a child collection this delegates to :meth:`ensure_children`
        with *parent_ids*.

        Raises:
            UnknownResourceError: If *name* is not declared.
            InvalidUsageError: If *parent_ids* is given for a flat resource.
            ShopcacheError: Whatever the transport raised; the slot is left
                unloaded.
        """
        descriptor = self._registry.get(name)
        if isinstance(descriptor, ChildCollectionDescriptor):
            await self.ensure_children(name, parent_ids)
            return
        if parent_ids is not None:
            raise InvalidUsageError(f"{name!r} is not a child collection; parent ids not accepted")

        output = get_output()
        if not is_unloaded(self._store.get(name)):
            output.debug(f"{name}: already loaded")
            return
        await self._share(name, name, lambda: self._load(descriptor))

    async def ensure_children(
        self,
        child_name: str,
        parent_ids: Optional[Iterable[ParentId]] = None,
    ) -> None:
        """Load *child_name* for each parent id that is not loaded yet.

        When *parent_ids* is omitted, the parent collection is loaded first
        and every id in it is used.

        Raises:
            ChildLoadError: If any parent's fetch failed. Parents that
                succeeded stay committed.
            InvalidUsageError: If a parent id is not numeric.
        """
        descriptor = self._registry.child(child_name)
        if parent_ids is None:
            await self.ensure(descriptor.parent_name)
            parent_ids = collection_ids(self._store.get(descriptor.parent_name))

        pending: list[ParentId] = []
        seen: set[Any] = set()
        for parent_id in parent_ids:
            try:
                key = normalize_id(parent_id)
            except (TypeError, ValueError) as exc:
                raise InvalidUsageError(f"Invalid parent id for {child_name!r}: {parent_id!r}") from exc
            if key in seen:
                continue
            seen.add(key)
            if is_unloaded(self._store.get_child(child_name, key)):
                pending.append(key)

        output = get_output()
        skipped = len(seen) - len(pending)
        if skipped:
            output.debug(f"{child_name}: {skipped} parent(s) already loaded")
        if not pending:
            return

        results = await asyncio.gather(
            *(
                self._share(
                    (child_name, parent_id),
                    f"{child_name}[{parent_id}]",
                    lambda parent_id=parent_id: self._load_child(descriptor, parent_id),
                )
                for parent_id in pending
            ),
            return_exceptions=True,
        )

        failures: dict[int, Exception] = {}
        succeeded: list[int] = []
        for parent_id, result in zip(pending, results):
            if isinstance(result, Exception):
                failures[parent_id] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                succeeded.append(parent_id)
        if failures:
            raise ChildLoadError(child_name, failures, succeeded)

    async def ensure_all(self) -> None:
        """Load every flat collection and asset concurrently."""
        names = [d.slot for d in self._registry if not self._registry.is_keyed(d.slot)]
        await asyncio.gather(*(self.ensure(name) for name in names))

    def is_loading(self, name: str, parent_id: Optional[ParentId] = None) -> bool:
        """Whether a fetch for *name* (or one parent's entry) is in flight."""
        self._registry.get(name)
        if parent_id is None:
            return name in self._inflight
        return (name, normalize_id(parent_id)) in self._inflight

    # ------------------------------------------------------------------ #
    # In-flight sharing
    # ------------------------------------------------------------------ #

    async def _share(
        self,
        key: Hashable,
        label: str,
        factory: Callable[[], Awaitable[None]],
    ) -> None:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, factory))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task
        else:
            get_output().debug(f"{label}: joining in-flight load")
        # one caller's cancellation must not cancel the shared fetch
        await asyncio.shield(task)

    async def _run(self, key: Hashable, factory: Callable[[], Awaitable[None]]) -> None:
        try:
            await factory()
        finally:
            self._inflight.pop(key, None)

    # ------------------------------------------------------------------ #
    # Fetch + commit
    # ------------------------------------------------------------------ #

    async def _load(self, descriptor: CollectionDescriptor | AssetDescriptor) -> None:
        if isinstance(descriptor, AssetDescriptor):
            url = asset_url(self._config.app_host, self._config.theme_id, self._asset_query(descriptor))
            field = "asset"
        else:
            url = collection_url(self._config.app_host, descriptor.path, self._config.global_query)
            field = descriptor.name

        body = await self._fetch(descriptor.slot, url)
        value = _unwrap(body, field, url)
        if isinstance(descriptor, AssetDescriptor):
            try:
                value = descriptor.extract_value(value)
            except (KeyError, TypeError, ValueError) as exc:
                raise PayloadError(f"Cannot extract {descriptor.name} from {url}: {exc}") from exc

        self._store.set(descriptor.slot, value)
        get_output().debug(f"{descriptor.slot}: committed")

    async def _load_child(self, descriptor: ChildCollectionDescriptor, parent_id: ParentId) -> None:
        url = child_url(
            self._config.app_host,
            descriptor.parent_name,
            parent_id,
            descriptor.child_name,
            self._config.global_query,
        )
        label = f"{descriptor.child_name}[{parent_id}]"
        body = await self._fetch(label, url)
        self._store.set_child(descriptor.child_name, parent_id, _unwrap(body, descriptor.child_name, url))
        get_output().debug(f"{label}: committed")

    async def _fetch(self, label: str, url: str) -> Any:
        output = get_output()
        output.debug(f"{label}: fetching {url}")
        try:
            return await self._http_get(url, with_credentials=self._config.request.with_credentials)
        except Exception as exc:
            output.debug(f"{label}: load failed: {exc}")
            raise

    def _asset_query(self, descriptor: AssetDescriptor) -> dict[str, Any]:
        query: dict[str, Any] = {"asset[key]": descriptor.asset_key}
        if descriptor.search_overrides_global:
            query.update(self._config.global_query)
            query.update(descriptor.search_params)
        else:
            query.update(descriptor.search_params)
            query.update(self._config.global_query)
        return query


def _unwrap(body: Any, field: str, url: str) -> Any:
    if not isinstance(body, dict) or field not in body:
        raise PayloadError(f"Response from {url} has no {field!r} field")
    return body[field]


def _retrieve_exception(task: asyncio.Task) -> None:
    # marks the failure as seen when every waiter was cancelled before it settled
    if not task.cancelled():
        task.exception()
