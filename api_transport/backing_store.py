"""Backing store - change tracking for deserialized models.

Models that expose a ``backing_store`` attribute keep their field values in
it. The store records which values changed after deserialization, so that
a later serialization can send only the changes (PATCH semantics).

The factory used to create stores is shared configuration: a
BackingStoreFactoryHolder starts out with the in-memory factory and is
replaced when a request adapter enables the backing store.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Protocol

from api_transport.abstractions import ParseNode, ParseNodeFactory, SerializationWriterFactory


class BackingStore(Protocol):
    initialization_completed: bool
    return_only_changed_values: bool

    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def enumerate(self) -> Iterator[tuple[str, Any]]: ...

    def enumerate_keys_for_values_changed_to_none(self) -> Iterator[str]: ...

    def clear(self) -> None: ...


class BackingStoreFactory(Protocol):
    def create_backing_store(self) -> BackingStore: ...


_UNSET = object()


class InMemoryBackingStore:
    """Dictionary-backed store that tracks values set after initialization."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._changed: set[str] = set()
        self.initialization_completed = False
        self.return_only_changed_values = False

    def get(self, key: str) -> Any:
        if self.return_only_changed_values and key not in self._changed:
            return None
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        previous = self._values.get(key, _UNSET)
        self._values[key] = value
        if self.initialization_completed and previous != value:
            self._changed.add(key)

    def enumerate(self) -> Iterator[tuple[str, Any]]:
        for key, value in list(self._values.items()):
            if self.return_only_changed_values and key not in self._changed:
                continue
            yield key, value

    def enumerate_keys_for_values_changed_to_none(self) -> Iterator[str]:
        for key in sorted(self._changed):
            if self._values.get(key) is None:
                yield key

    def clear(self) -> None:
        self._values.clear()
        self._changed.clear()


class InMemoryBackingStoreFactory:
    def create_backing_store(self) -> BackingStore:
        return InMemoryBackingStore()


class BackingStoreFactoryHolder:
    """Shared, replaceable reference to the active backing store factory.

    Code that creates models reads ``holder.factory``. Replacing the factory
    affects every reader of the same holder from then on.
    """

    def __init__(self, factory: BackingStoreFactory | None = None) -> None:
        self._factory: BackingStoreFactory = factory or InMemoryBackingStoreFactory()

    @property
    def factory(self) -> BackingStoreFactory:
        return self._factory

    def replace(self, factory: BackingStoreFactory) -> None:
        if factory is None:
            raise ValueError("factory cannot be None")
        self._factory = factory

    def create_backing_store(self) -> BackingStore:
        return self._factory.create_backing_store()


DEFAULT_BACKING_STORE_FACTORIES = BackingStoreFactoryHolder()


# =============================================================================
# Backing-store-aware proxy factories
# =============================================================================


def _store_of(value: Any) -> Any:
    return getattr(value, "backing_store", None)


def _mark_initialized(value: Any) -> None:
    store = _store_of(value)
    if store is not None:
        store.initialization_completed = True


def _chain(first: Callable[[Any], None] | None, second: Callable[[Any], None]) -> Callable[[Any], None]:
    def hook(value: Any) -> None:
        if first is not None:
            first(value)
        second(value)

    return hook


class BackingStoreParseNodeFactory:
    """Wraps a parse node factory so parsed models finish initialization.

    Parse nodes that support the ``on_after_assign_field_values`` hook get a
    hook marking the model's backing store as initialized, so only later
    assignments count as changes.
    """

    def __init__(self, concrete: ParseNodeFactory) -> None:
        if concrete is None:
            raise ValueError("concrete parse node factory cannot be None")
        self._concrete = concrete

    def get_valid_content_type(self) -> str:
        return self._concrete.get_valid_content_type()

    def get_root_parse_node(self, content_type: str, content: bytes) -> ParseNode:
        node = self._concrete.get_root_parse_node(content_type, content)
        if hasattr(node, "on_after_assign_field_values"):
            original = getattr(node, "on_after_assign_field_values")
            node.on_after_assign_field_values = _chain(original, _mark_initialized)
        return node


class BackingStoreSerializationWriterFactory:
    """Wraps a writer factory so only changed values are serialized."""

    def __init__(self, concrete: SerializationWriterFactory) -> None:
        if concrete is None:
            raise ValueError("concrete serialization writer factory cannot be None")
        self._concrete = concrete

    def get_valid_content_type(self) -> str:
        return self._concrete.get_valid_content_type()

    def get_serialization_writer(self, content_type: str) -> Any:
        writer = self._concrete.get_serialization_writer(content_type)
        if hasattr(writer, "on_before_object_serialization"):
            writer.on_before_object_serialization = _chain(
                getattr(writer, "on_before_object_serialization"), _only_changed_values
            )
        if hasattr(writer, "on_after_object_serialization"):
            writer.on_after_object_serialization = _chain(
                getattr(writer, "on_after_object_serialization"), _finish_serialization
            )
        return writer


def _only_changed_values(value: Any) -> None:
    store = _store_of(value)
    if store is not None:
        store.return_only_changed_values = True


def _finish_serialization(value: Any) -> None:
    store = _store_of(value)
    if store is not None:
        store.return_only_changed_values = False
        store.initialization_completed = True
