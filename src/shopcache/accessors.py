"""Read-only lookups over loaded state.

Every accessor is synchronous and never triggers a fetch. Anything not
loaded yet reads as :data:`~shopcache.sentinel.UNLOADED`.

:meth:`Accessors.by_id` returns ``UNLOADED`` both when the collection is
not loaded and when no entity has the requested id; callers cannot tell
the two apart.
"""

from __future__ import annotations

from typing import Any, Optional

from shopcache.registry import ResourceRegistry
from shopcache.sentinel import UNLOADED, is_unloaded
from shopcache.store import ParentId, StoreAdapter, normalize_id


def _same_id(entity: Any, wanted: Any) -> bool:
    if not isinstance(entity, dict) or "id" not in entity:
        return False
    try:
        return normalize_id(entity["id"]) == wanted
    except (TypeError, ValueError):
        return False


def collection_ids(value: Any) -> list[Any]:
    """Ids of the entities in *value*, or ``[]`` if it is not a loaded list."""
    if not isinstance(value, list):
        return []
    return [entity["id"] for entity in value if isinstance(entity, dict) and "id" in entity]


class Accessors:
    """Derived lookups for every declared resource.

    Args:
        registry: Declared resources; unknown names raise
            :class:`~shopcache.exceptions.UnknownResourceError`.
        store: Adapter to read from.
    """

    def __init__(self, registry: ResourceRegistry, store: StoreAdapter) -> None:
        self._registry = registry
        self._store = store

    def all(self, name: str) -> Any:
        """Current value of a collection or asset slot (possibly ``UNLOADED``).

        For a child collection this is the same as :meth:`child_all`.
        """
        if self._registry.is_keyed(name):
            return self.child_all(name)
        return self._store.get(name)

    def by_id(self, name: str, entity_id: Any) -> Any:
        """The entity in collection *name* whose id equals *entity_id* numerically."""
        self._registry.collection(name)
        items = self._store.get(name)
        if not isinstance(items, list):
            return UNLOADED
        try:
            wanted = normalize_id(entity_id)
        except (TypeError, ValueError):
            return UNLOADED
        for entity in items:
            if _same_id(entity, wanted):
                return entity
        return UNLOADED

    def ids(self, name: str) -> list[Any]:
        """Ids of every entity in collection *name*; ``[]`` when unloaded."""
        self._registry.collection(name)
        return collection_ids(self._store.get(name))

    def child_all(self, child_name: str) -> list[Any]:
        """Every loaded child across all parents, flattened one level."""
        self._registry.child(child_name)
        flattened: list[Any] = []
        for value in self._store.entries(child_name).values():
            if is_unloaded(value):
                continue
            if isinstance(value, list):
                flattened.extend(value)
            else:
                flattened.append(value)
        return flattened

    def child_for(self, child_name: str, parent_id: ParentId) -> Any:
        """Children loaded for one parent, or ``UNLOADED``."""
        self._registry.child(child_name)
        return self._store.get_child(child_name, parent_id)

    def get(self, name: str, entity_id: Optional[Any] = None) -> Any:
        """:meth:`all` when *entity_id* is ``None``, otherwise :meth:`by_id`."""
        if entity_id is None:
            return self.all(name)
        return self.by_id(name, entity_id)
