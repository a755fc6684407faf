"""Contracts for the collaborators the request adapter depends on.

Authentication, deserialization and serialization are pluggable: the
adapter only relies on the shapes declared here. Content-type keyed
registries let one adapter serve several payload formats.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    import httpx

    from api_transport.request_information import RequestInformation

T = TypeVar("T")


class ApiError(Exception):
    """Error returned by the service, or a response that could not be handled.

    Generated error models subclass this so that a deserialized error body
    can be raised directly.
    """

    def __init__(
        self,
        message: str = "",
        response_status_code: int | None = None,
        response_headers: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.response_status_code = response_status_code
        self.response_headers = response_headers or {}

    def __str__(self) -> str:
        if self.response_status_code is not None:
            return f"{self.message} (status {self.response_status_code})"
        return self.message


# =============================================================================
# Authentication
# =============================================================================


class AuthenticationProvider(Protocol):
    """Authenticates a request, typically by adding an Authorization header."""

    async def authenticate_request(
        self,
        request: RequestInformation,
        additional_authentication_context: dict[str, Any] | None = None,
    ) -> None: ...


class AnonymousAuthenticationProvider:
    """Leaves requests untouched."""

    async def authenticate_request(
        self,
        request: RequestInformation,
        additional_authentication_context: dict[str, Any] | None = None,
    ) -> None:
        return None


# =============================================================================
# Deserialization
# =============================================================================


@runtime_checkable
class Parsable(Protocol):
    """A model that can be read from a ParseNode."""

    def get_field_deserializers(self) -> dict[str, Any]: ...

    def serialize(self, writer: Any) -> None: ...


class ParsableFactory(Protocol[T]):
    """Creates a model instance, possibly choosing a subtype from the node."""

    def create_from_discriminator_value(self, parse_node: ParseNode) -> T: ...


class ParseNode(Protocol):
    """Format-specific reader over a response payload."""

    def get_object_value(self, factory: ParsableFactory[T]) -> T | None: ...

    def get_collection_of_object_values(self, factory: ParsableFactory[T]) -> list[T] | None: ...

    def get_collection_of_primitive_values(self, primitive_type: Any) -> list[Any] | None: ...

    def get_bool_value(self) -> bool | None: ...

    def get_byte_value(self) -> int | None: ...

    def get_sbyte_value(self) -> int | None: ...

    def get_str_value(self) -> str | None: ...

    def get_int_value(self) -> int | None: ...

    def get_float_value(self) -> float | None: ...

    def get_long_value(self) -> int | None: ...

    def get_double_value(self) -> float | None: ...

    def get_decimal_value(self) -> Any: ...

    def get_uuid_value(self) -> Any: ...

    def get_datetime_value(self) -> Any: ...

    def get_timedelta_value(self) -> Any: ...

    def get_date_value(self) -> Any: ...


class ParseNodeFactory(Protocol):
    def get_valid_content_type(self) -> str: ...

    def get_root_parse_node(self, content_type: str, content: bytes) -> ParseNode: ...


class SerializationWriterFactory(Protocol):
    def get_valid_content_type(self) -> str: ...

    def get_serialization_writer(self, content_type: str) -> Any: ...


class ResponseHandler(Protocol):
    """Takes over response processing entirely when passed to the adapter.

    The handler receives the unread response and owns closing it.
    """

    async def handle_response_async(
        self,
        response: httpx.Response,
        error_map: dict[str, ParsableFactory[Any]] | None,
    ) -> Any: ...


# =============================================================================
# Content-type Registries
# =============================================================================

# application/vnd.github.v3+json -> application/json
_VENDOR_SPECIFIC = re.compile(r"[^/]+\+", re.IGNORECASE)


def clean_content_type(content_type: str) -> str:
    """Lowercase media type without parameters."""
    return content_type.split(";", 1)[0].strip().lower()


def _vendor_cleaned(content_type: str) -> str:
    return _VENDOR_SPECIFIC.sub("", content_type)


class ParseNodeFactoryRegistry:
    """Dispatches to a parse node factory registered for the content type."""

    def __init__(self) -> None:
        self.content_type_associated_factories: dict[str, ParseNodeFactory] = {}

    def get_valid_content_type(self) -> str:
        raise RuntimeError("The registry supports multiple content types")

    def register(self, factory: ParseNodeFactory) -> None:
        self.content_type_associated_factories[factory.get_valid_content_type()] = factory

    def get_root_parse_node(self, content_type: str, content: bytes) -> ParseNode:
        if not content_type:
            raise ValueError("content_type cannot be empty")
        cleaned = clean_content_type(content_type)
        factory = self.content_type_associated_factories.get(cleaned)
        if factory is None:
            factory = self.content_type_associated_factories.get(_vendor_cleaned(cleaned))
        if factory is None:
            raise ValueError(
                f"Content type {cleaned} does not have a factory registered to be parsed"
            )
        return factory.get_root_parse_node(cleaned, content)


class SerializationWriterFactoryRegistry:
    """Dispatches to a serialization writer factory registered for the content type."""

    def __init__(self) -> None:
        self.content_type_associated_factories: dict[str, SerializationWriterFactory] = {}

    def get_valid_content_type(self) -> str:
        raise RuntimeError("The registry supports multiple content types")

    def register(self, factory: SerializationWriterFactory) -> None:
        self.content_type_associated_factories[factory.get_valid_content_type()] = factory

    def get_serialization_writer(self, content_type: str) -> Any:
        if not content_type:
            raise ValueError("content_type cannot be empty")
        cleaned = clean_content_type(content_type)
        factory = self.content_type_associated_factories.get(cleaned)
        if factory is None:
            factory = self.content_type_associated_factories.get(_vendor_cleaned(cleaned))
        if factory is None:
            raise ValueError(
                f"Content type {cleaned} does not have a factory registered to be serialized"
            )
        return factory.get_serialization_writer(cleaned)


# Process-wide default registries, populated by serialization libraries at import time
DEFAULT_PARSE_NODE_FACTORY_REGISTRY = ParseNodeFactoryRegistry()
DEFAULT_SERIALIZATION_WRITER_FACTORY_REGISTRY = SerializationWriterFactoryRegistry()
