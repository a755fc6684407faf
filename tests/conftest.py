"""Pytest configuration and fixtures for api-transport tests.

This file provides:
- Fake collaborators: parse node factory, models, authentication provider
- TrackingStream: response body that records whether it was read and closed
- RecordingTransport: terminal transport that records requests it receives
- make_adapter: HttpxRequestAdapter wired to an httpx.MockTransport
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable

import httpx
import pytest

from api_transport.abstractions import ApiError
from api_transport.backing_store import BackingStoreFactoryHolder
from api_transport.request_adapter import HttpxRequestAdapter
from api_transport.request_information import RequestInformation

JSON = "application/json"


# =============================================================================
# Fake deserialization
# =============================================================================


class FakeParseNode:
    """ParseNode over already-decoded JSON data."""

    def __init__(self, data: Any) -> None:
        self.data = data

    def get_object_value(self, factory: Any) -> Any:
        return factory.create_from_discriminator_value(self)

    def get_collection_of_object_values(self, factory: Any) -> list[Any]:
        return [factory.create_from_discriminator_value(FakeParseNode(item)) for item in self.data]

    def get_collection_of_primitive_values(self, primitive_type: Any) -> list[Any]:
        return list(self.data)

    def get_bool_value(self) -> bool:
        return bool(self.data)

    def get_str_value(self) -> str:
        return str(self.data)

    def get_int_value(self) -> int:
        return int(self.data)

    def get_float_value(self) -> float:
        return float(self.data)


class FakeParseNodeFactory:
    """JSON parse node factory that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, bytes]] = []

    def get_valid_content_type(self) -> str:
        return JSON

    def get_root_parse_node(self, content_type: str, content: bytes) -> FakeParseNode:
        self.calls.append((content_type, content))
        return FakeParseNode(json.loads(content))


class MockEntity:
    def __init__(self, id: str | None = None) -> None:
        self.id = id

    @staticmethod
    def create_from_discriminator_value(parse_node: FakeParseNode) -> "MockEntity":
        return MockEntity(id=parse_node.data.get("id"))


class MockError(ApiError):
    @staticmethod
    def create_from_discriminator_value(parse_node: FakeParseNode) -> "MockError":
        return MockError(parse_node.data.get("message", ""))


class OtherError(ApiError):
    @staticmethod
    def create_from_discriminator_value(parse_node: FakeParseNode) -> "OtherError":
        return OtherError(parse_node.data.get("message", ""))


class RecordingAuthenticationProvider:
    """Records the additional context of every authentication call."""

    def __init__(self, token: str = "token") -> None:
        self.token = token
        self.contexts: list[dict[str, Any] | None] = []

    async def authenticate_request(
        self,
        request: RequestInformation,
        additional_authentication_context: dict[str, Any] | None = None,
    ) -> None:
        self.contexts.append(additional_authentication_context)
        request.headers["authorization"] = [f"Bearer {self.token}"]


# =============================================================================
# Fake network
# =============================================================================


class TrackingStream(httpx.AsyncByteStream):
    """Response body that records whether it was read and closed."""

    def __init__(self, body: bytes = b"") -> None:
        self.body = body
        self.read = False
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        self.read = True
        if self.body:
            yield self.body

    async def aclose(self) -> None:
        self.closed = True


class RecordingTransport(httpx.AsyncBaseTransport):
    """Terminal transport returning queued responses and recording requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses) or [httpx.Response(200)]
        self.requests: list[httpx.Request] = []
        self.closed = False

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def aclose(self) -> None:
        self.closed = True


def make_adapter(
    handler: Callable[[httpx.Request], Any],
    authentication_provider: Any = None,
    parse_node_factory: Any = None,
    base_url: str | None = "http://localhost",
) -> HttpxRequestAdapter:
    """Create an adapter whose client sends every request to ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxRequestAdapter(
        authentication_provider or RecordingAuthenticationProvider(),
        parse_node_factory=parse_node_factory or FakeParseNodeFactory(),
        http_client=client,
        base_url=base_url,
        backing_store_factories=BackingStoreFactoryHolder(),
    )


def make_request_info(url_template: str = "{+baseurl}/me") -> RequestInformation:
    return RequestInformation(url_template=url_template)


@pytest.fixture
def parse_node_factory() -> FakeParseNodeFactory:
    return FakeParseNodeFactory()


@pytest.fixture
def auth_provider() -> RecordingAuthenticationProvider:
    return RecordingAuthenticationProvider()
