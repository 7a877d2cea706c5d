"""The closed set of resource descriptors and the names derived from them.

A :class:`ResourceRegistry` is built once at startup from a list of
descriptors and never changes afterwards. Every other layer asks it for
the descriptor behind a name; an unknown name is a programming error
and raises :class:`~shopcache.exceptions.UnknownResourceError`.

The registry also owns the naming rules that turn a descriptor into the
accessor names UI code addresses (``products`` -> ``product``,
``productIds``, ``loadProducts``; ``blogs``/``articles`` ->
``articlesForBlog``). :meth:`ResourceRegistry.derived_names` maps each
such name to the resource and operation it stands for, so the facade can
resolve names through a table instead of building attributes on the fly.
"""

from __future__ import annotations

import json
from typing import Any, Iterator, NamedTuple, Optional, Sequence

from shopcache.exceptions import RegistryError, UnknownResourceError
from shopcache.models import (
    AssetDescriptor,
    ChildCollectionDescriptor,
    CollectionDescriptor,
    Descriptor,
)


def capitalize(name: str) -> str:
    """Upper-case the first character only (``settingsData`` -> ``SettingsData``)."""
    return name[:1].upper() + name[1:]


def singularize(name: str) -> str:
    """Strip a single trailing ``s`` (``blogs`` -> ``blog``, ``shop`` -> ``shop``)."""
    return name[:-1] if name.endswith("s") else name


class DerivedName(NamedTuple):
    """What a generated accessor name refers to."""

    resource: str
    operation: str


class ResourceRegistry:
    """Validated, read-only lookup over a fixed descriptor list.

    Args:
        descriptors: Every resource the cache may load. Slot names must be
            unique and each child collection's parent must be a declared
            collection.

    Raises:
        RegistryError: When slot names or derived names collide, or a
            child collection names an undeclared parent.
    """

    def __init__(self, descriptors: Sequence[Descriptor]) -> None:
        self._by_name: dict[str, Descriptor] = {}
        for descriptor in descriptors:
            if descriptor.slot in self._by_name:
                raise RegistryError(f"Duplicate resource name: {descriptor.slot}")
            self._by_name[descriptor.slot] = descriptor

        for child in self.children:
            parent = self._by_name.get(child.parent_name)
            if not isinstance(parent, CollectionDescriptor):
                raise RegistryError(
                    f"Child collection {child.child_name!r} needs a declared "
                    f"parent collection {child.parent_name!r}"
                )

        self._derived = self._derive_names()

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Descriptor]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    @property
    def names(self) -> list[str]:
        return list(self._by_name)

    @property
    def collections(self) -> list[CollectionDescriptor]:
        return [d for d in self if isinstance(d, CollectionDescriptor)]

    @property
    def assets(self) -> list[AssetDescriptor]:
        return [d for d in self if isinstance(d, AssetDescriptor)]

    @property
    def children(self) -> list[ChildCollectionDescriptor]:
        return [d for d in self if isinstance(d, ChildCollectionDescriptor)]

    def get(self, name: str) -> Descriptor:
        """Return the descriptor for *name*.

        Raises:
            UnknownResourceError: If *name* is not declared.
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownResourceError(f"Unknown resource: {name!r}") from None

    def collection(self, name: str) -> CollectionDescriptor:
        return self._expect(name, CollectionDescriptor, "collection")

    def child(self, name: str) -> ChildCollectionDescriptor:
        return self._expect(name, ChildCollectionDescriptor, "child collection")

    def is_keyed(self, name: str) -> bool:
        """Whether *name*'s slot is a keyed map rather than a single value."""
        return isinstance(self.get(name), ChildCollectionDescriptor)

    def derived_names(self) -> dict[str, DerivedName]:
        """Return a copy of the generated-name table."""
        return dict(self._derived)

    def resolve(self, derived: str) -> DerivedName:
        """Look up a generated accessor name such as ``articlesForBlog``."""
        try:
            return self._derived[derived]
        except KeyError:
            raise UnknownResourceError(f"Unknown accessor: {derived!r}") from None

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _expect(self, name: str, kind: type, label: str) -> Any:
        descriptor = self.get(name)
        if not isinstance(descriptor, kind):
            raise UnknownResourceError(f"{name!r} is not a {label}")
        return descriptor

    def _derive_names(self) -> dict[str, DerivedName]:
        table: dict[str, DerivedName] = {}

        def add(key: str, resource: str, operation: str) -> None:
            if key in table:
                raise RegistryError(f"Derived name collision: {key!r}")
            table[key] = DerivedName(resource, operation)

        for d in self:
            add(d.slot, d.slot, "all")
            add(f"load{capitalize(d.slot)}", d.slot, "ensure")
            add(f"set{capitalize(d.slot)}", d.slot, "set")
            if isinstance(d, CollectionDescriptor):
                # "shop" stays "shop", which is already its all() accessor
                singular = singularize(d.name)
                if singular != d.name:
                    add(singular, d.name, "by_id")
                add(f"{singular}Ids", d.name, "ids")
            elif isinstance(d, ChildCollectionDescriptor):
                parent = capitalize(singularize(d.parent_name))
                add(f"{d.child_name}For{parent}", d.child_name, "child_for")
        return table


def _decode_settings(asset: dict[str, Any]) -> Any:
    return json.loads(asset["value"])


DEFAULT_DESCRIPTORS: list[Descriptor] = [
    CollectionDescriptor(name="products"),
    CollectionDescriptor(name="collects"),
    CollectionDescriptor(name="blogs"),
    CollectionDescriptor(name="shop"),
    AssetDescriptor(
        name="settingsData",
        folder="config",
        filename="settings_data.json",
        search_fields=("value",),
        extract_value=_decode_settings,
    ),
    ChildCollectionDescriptor(parent_name="blogs", child_name="articles"),
]

DEFAULT_REGISTRY = ResourceRegistry(DEFAULT_DESCRIPTORS)


def build_registry(descriptors: Optional[Sequence[Descriptor]] = None) -> ResourceRegistry:
    """Return :data:`DEFAULT_REGISTRY`, or a new registry over *descriptors*."""
    if descriptors is None:
        return DEFAULT_REGISTRY
    return ResourceRegistry(descriptors)
