"""Reactive key-value store and the slot-checked adapter over it.

The cache treats its state container as an external collaborator that
only has to honour the :class:`StateBackend` protocol: an initial state,
a ``commit(key, payload)`` write and a ``read(key)`` lookup, plus
subscriptions. :class:`ReactiveStore` is the in-process implementation
used by default; UI integrations can supply their own.

:class:`StoreAdapter` sits between that container and the rest of the
package. It knows the registry, so addressing an undeclared slot fails
loudly, and it makes "value or :data:`~shopcache.sentinel.UNLOADED`" the
contract of every read. Child collections are stored in a
:class:`KeyedMap` whose missing entries read as ``UNLOADED`` as well.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Mapping, Protocol, Union, runtime_checkable

from shopcache.exceptions import UnknownResourceError
from shopcache.registry import ResourceRegistry
from shopcache.sentinel import UNLOADED, is_unloaded

ParentId = Union[int, str]
Subscriber = Callable[[str, Any], None]


def normalize_id(value: Any) -> Union[int, float]:
    """Coerce an entity or parent id to a number so ``"3"`` and ``3`` compare equal.

    Raises:
        ValueError: If *value* is not numeric.
        TypeError: If *value* is a bool or not a str/number.
    """
    if isinstance(value, bool):
        raise TypeError(f"Invalid id: {value!r}")
    if isinstance(value, int):
        return value
    number = float(value)
    return int(number) if number.is_integer() else number


class KeyedMap(Mapping[Any, Any]):
    """Parent id -> child payload, with ``UNLOADED`` for every absent parent."""

    def __init__(self) -> None:
        self._entries: dict[Union[int, float], Any] = {}

    def __getitem__(self, parent_id: ParentId) -> Any:
        return self._entries.get(normalize_id(parent_id), UNLOADED)

    def __contains__(self, parent_id: object) -> bool:
        try:
            return normalize_id(parent_id) in self._entries
        except (TypeError, ValueError):
            return False

    def __iter__(self) -> Iterator[Union[int, float]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"KeyedMap({self._entries!r})"

    def put(self, parent_id: ParentId, value: Any) -> None:
        self._entries[normalize_id(parent_id)] = value


@runtime_checkable
class StateBackend(Protocol):
    """Contract of the reactive container the cache writes into.

    ``read`` may raise :class:`KeyError` for a slot the container has
    never held; the adapter reads such a slot as its initial value.
    """

    def initial_state(self, registry: ResourceRegistry) -> Mapping[str, Any]:
        """Return the ``{slot: UNLOADED}`` state the container starts from."""
        ...

    def commit(self, key: str, payload: Any) -> None:
        """Write *payload* to *key* and notify its subscribers."""
        ...

    def read(self, key: str) -> Any:
        """Return the current value of *key*."""
        ...

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for changes to *key*; return an unsubscribe function."""
        ...


class ReactiveStore:
    """Minimal in-process reactive store.

    Every declared slot exists from construction and holds ``UNLOADED``;
    keyed slots hold an empty :class:`KeyedMap`. Commits to a keyed slot
    carry ``{"parent_id": ..., "data": ...}`` and update one entry.
    Subscribers run synchronously after each commit with ``(key, value)``.

    Args:
        registry: The descriptors whose slots the store holds.
    """

    def __init__(self, registry: ResourceRegistry) -> None:
        self._keyed = {d.slot for d in registry.children}
        self._state: dict[str, Any] = self.initial_state(registry)
        self._subscribers: dict[str, list[Subscriber]] = {}

    @staticmethod
    def initial_state(registry: ResourceRegistry) -> dict[str, Any]:
        """Return a fresh ``{slot: UNLOADED}`` mapping for *registry*."""
        return {
            d.slot: KeyedMap() if registry.is_keyed(d.slot) else UNLOADED
            for d in registry
        }

    def commit(self, key: str, payload: Any) -> None:
        self._check(key)
        if key in self._keyed:
            self._state[key].put(payload["parent_id"], payload["data"])
        else:
            self._state[key] = payload
        value = self._state[key]
        for callback in list(self._subscribers.get(key, ())):
            callback(key, value)

    def read(self, key: str) -> Any:
        self._check(key)
        return self._state[key]

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        self._check(key)
        callbacks = self._subscribers.setdefault(key, [])
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _check(self, key: str) -> None:
        if key not in self._state:
            raise UnknownResourceError(f"Unknown slot: {key!r}")


class StoreAdapter:
    """Typed, slot-checked reads and writes over a :class:`StateBackend`.

    Reads never raise for a declared slot: a value that was never set, or
    a parent id with no entry, reads as ``UNLOADED``. Parent ids are
    normalised here before they reach the backend, so ``"3"`` and ``3``
    address one entry whatever container sits underneath. Writes are
    total overwrites of a slot or of one keyed-map entry.

    Flat slots the backend does not hold yet are seeded with ``UNLOADED``
    on construction. Keyed slots it does not hold read as empty.

    Args:
        registry: Closed set of declared slots.
        backend: Reactive container to read from and commit to. A fresh
            :class:`ReactiveStore` is created when omitted.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        backend: StateBackend | None = None,
    ) -> None:
        self._registry = registry
        self._backend = backend if backend is not None else ReactiveStore(registry)
        self._initial = dict(self._backend.initial_state(registry))
        self._seed()

    @property
    def backend(self) -> StateBackend:
        return self._backend

    def get(self, slot: str) -> Any:
        """Return the value stored in a flat slot, or ``UNLOADED``."""
        self._expect_flat(slot)
        return self._read(slot)

    def set(self, slot: str, value: Any) -> None:
        """Overwrite a flat slot and notify its subscribers."""
        self._expect_flat(slot)
        if is_unloaded(value):
            raise ValueError(f"Cannot reset slot {slot!r} to UNLOADED")
        self._backend.commit(slot, value)

    def entries(self, slot: str) -> Mapping[Any, Any]:
        """Return the keyed map behind a child-collection slot."""
        self._expect_keyed(slot)
        return self._read(slot)

    def get_child(self, slot: str, parent_id: ParentId) -> Any:
        """Return one parent's entry in a keyed slot, or ``UNLOADED``.

        Raises:
            ValueError: If *parent_id* is not numeric.
        """
        entries = self.entries(slot)
        key = normalize_id(parent_id)
        try:
            return entries[key]
        except KeyError:
            return UNLOADED

    def set_child(self, slot: str, parent_id: ParentId, value: Any) -> None:
        """Insert or overwrite one parent's entry; other parents are untouched."""
        self._expect_keyed(slot)
        if is_unloaded(value):
            raise ValueError(f"Cannot reset {slot!r}[{parent_id!r}] to UNLOADED")
        self._backend.commit(slot, {"parent_id": normalize_id(parent_id), "data": value})

    def subscribe(self, slot: str, callback: Subscriber) -> Callable[[], None]:
        self._registry.get(slot)
        return self._backend.subscribe(slot, callback)

    def _read(self, slot: str) -> Any:
        try:
            return self._backend.read(slot)
        except KeyError:
            return self._initial.get(slot, UNLOADED)

    def _seed(self) -> None:
        for descriptor in self._registry:
            slot = descriptor.slot
            if self._registry.is_keyed(slot):
                self._initial.setdefault(slot, KeyedMap())
                continue
            try:
                self._backend.read(slot)
            except KeyError:
                self._backend.commit(slot, UNLOADED)

    def _expect_flat(self, slot: str) -> None:
        if self._registry.is_keyed(slot):
            raise UnknownResourceError(f"{slot!r} is a keyed slot; use get_child/set_child")

    def _expect_keyed(self, slot: str) -> None:
        if not self._registry.is_keyed(slot):
            raise UnknownResourceError(f"{slot!r} is not a keyed slot")
