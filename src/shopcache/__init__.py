"""shopcache -- a load-once, reactively observable cache for a storefront API.

UI code asks for a named resource (a catalog collection, a theme
configuration asset, or a per-parent child collection) and the cache
fetches it at most once, then serves consistent reads from a reactive
store. Until a resource has been fetched, every read returns the
:data:`~shopcache.sentinel.UNLOADED` marker.

Typical usage::

    from shopcache import ShopCache
    from shopcache.config import resolve_config

    async with ShopCache(resolve_config()) as cache:
        await cache.ensure("products")
        cache.by_id("products", 7)

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for configuration and resource descriptors.
    registry: The closed set of resource descriptors and derived names.
    store: Reactive store and the slot-checked adapter over it.
    loader: Load-once fetchers with in-flight request sharing.
    accessors: Read-only lookups over loaded state.
    cache: :class:`ShopCache` facade wiring everything together.
    client: Async HTTP transport backed by :mod:`httpx`.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"

from shopcache.cache import ShopCache  # noqa: E402
from shopcache.sentinel import UNLOADED, is_unloaded  # noqa: E402

__all__ = ["ShopCache", "UNLOADED", "is_unloaded", "__version__"]
