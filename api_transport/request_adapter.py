"""Request adapter - sends RequestInformation over httpx and deserializes results.

Lifecycle of one call:

    inject base URL -> authenticate -> send through the middleware chain
      -> (401 claims challenge? re-authenticate with claims and send once more)
      -> raise mapped error / return None for no content / deserialize
      -> drain and close the response

The response is read and closed on every path except a successful raw
stream result, which is handed to the caller unread.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, TypeVar

import httpx

from api_transport import client_factory
from api_transport.abstractions import (
    DEFAULT_PARSE_NODE_FACTORY_REGISTRY,
    DEFAULT_SERIALIZATION_WRITER_FACTORY_REGISTRY,
    ApiError,
    AuthenticationProvider,
    ParsableFactory,
    ParseNode,
    ParseNodeFactory,
    ResponseHandler,
    SerializationWriterFactory,
    clean_content_type,
)
from api_transport.backing_store import (
    DEFAULT_BACKING_STORE_FACTORIES,
    BackingStoreFactory,
    BackingStoreFactoryHolder,
    BackingStoreParseNodeFactory,
    BackingStoreSerializationWriterFactory,
)
from api_transport.middleware import RequestContentStream
from api_transport.models import PrimitiveKind, TransportConfig
from api_transport.request_information import BASE_URL_KEY, RequestInformation

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorMapping = dict[str, ParsableFactory[Any]]

CLAIMS_KEY = "claims"
BEARER_SCHEME = "bearer"
WWW_AUTHENTICATE_HEADER = "www-authenticate"

# Statuses that never carry a body worth deserializing
NO_CONTENT_STATUS_CODES = frozenset({204, 205})

# First double-quoted token, e.g. claims="eyJhY2Nlc3N..."
_QUOTED_VALUE = re.compile(r'"([^"]*)"')

# Scalar kind -> ParseNode getter
_PRIMITIVE_GETTERS: dict[PrimitiveKind, Callable[[ParseNode], Any]] = {
    PrimitiveKind.BOOL: lambda node: node.get_bool_value(),
    PrimitiveKind.BYTE: lambda node: node.get_byte_value(),
    PrimitiveKind.SBYTE: lambda node: node.get_sbyte_value(),
    PrimitiveKind.STR: lambda node: node.get_str_value(),
    PrimitiveKind.INT: lambda node: node.get_int_value(),
    PrimitiveKind.FLOAT: lambda node: node.get_float_value(),
    PrimitiveKind.LONG: lambda node: node.get_long_value(),
    PrimitiveKind.DOUBLE: lambda node: node.get_double_value(),
    PrimitiveKind.DECIMAL: lambda node: node.get_decimal_value(),
    PrimitiveKind.UUID: lambda node: node.get_uuid_value(),
    PrimitiveKind.DATETIME: lambda node: node.get_datetime_value(),
    PrimitiveKind.TIMEDELTA: lambda node: node.get_timedelta_value(),
    PrimitiveKind.DATE: lambda node: node.get_date_value(),
}


class RequestAdapterError(Exception):
    """Raised on internal faults: no response, unsupported result type, misuse."""


def _headers_as_dict(headers: httpx.Headers) -> dict[str, list[str]]:
    result: dict[str, list[str]] = {}
    for key, value in headers.multi_items():
        result.setdefault(key.lower(), []).append(value)
    return result


def get_claims_from_response(response: httpx.Response) -> str | None:
    """Extract the claims challenge from a 401 response's Bearer challenge.

    Only the first Bearer challenge and its first parameter starting with
    'claims' are considered; the first double-quoted token in that parameter
    is the claims value.
    """
    for challenge in response.headers.get_list(WWW_AUTHENTICATE_HEADER):
        scheme, _, parameters = challenge.strip().partition(" ")
        if scheme.lower() != BEARER_SCHEME:
            continue
        for parameter in parameters.split(","):
            parameter = parameter.strip()
            if not parameter.lower().startswith(CLAIMS_KEY):
                continue
            match = _QUOTED_VALUE.search(parameter)
            return match.group(1) if match else None
        return None
    return None


class HttpxRequestAdapter:
    """Executes RequestInformation instances with an httpx.AsyncClient.

    Usage:
        async with HttpxRequestAdapter(auth_provider, parse_node_factory) as adapter:
            adapter.base_url = "https://api.example.com/v1"
            user = await adapter.send(request_info, User)

    The adapter holds configuration only; concurrent calls share nothing
    but the client and the factories.
    """

    def __init__(
        self,
        authentication_provider: AuthenticationProvider,
        parse_node_factory: ParseNodeFactory | None = None,
        serialization_writer_factory: SerializationWriterFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        backing_store_factories: BackingStoreFactoryHolder | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            authentication_provider: Authenticates every request. Required.
            parse_node_factory: Response deserializer factory. Defaults to the
                process-wide content-type registry.
            serialization_writer_factory: Request serializer factory. Defaults
                to the process-wide content-type registry.
            http_client: Client to send with. When None, a client with the
                default middleware pipeline is created and owned by the adapter.
            base_url: Value injected as the 'baseurl' template variable.
            backing_store_factories: Shared backing store factory holder.
                Defaults to DEFAULT_BACKING_STORE_FACTORIES.

        Raises:
            ValueError: If authentication_provider is None.
        """
        if authentication_provider is None:
            raise ValueError("authentication_provider cannot be None")
        self._authentication_provider = authentication_provider
        self._parse_node_factory: ParseNodeFactory = (
            parse_node_factory or DEFAULT_PARSE_NODE_FACTORY_REGISTRY
        )
        self._serialization_writer_factory: SerializationWriterFactory = (
            serialization_writer_factory or DEFAULT_SERIALIZATION_WRITER_FACTORY_REGISTRY
        )
        self._owns_client = http_client is None
        self._client = http_client or client_factory.create()
        self._backing_store_factories = backing_store_factories or DEFAULT_BACKING_STORE_FACTORIES
        self._backing_store_enabled = False
        self.base_url = base_url

    @classmethod
    def from_config(
        cls,
        authentication_provider: AuthenticationProvider,
        config: TransportConfig,
        parse_node_factory: ParseNodeFactory | None = None,
        serialization_writer_factory: SerializationWriterFactory | None = None,
    ) -> "HttpxRequestAdapter":
        """Build an adapter whose owned client follows a TransportConfig."""
        adapter = cls(
            authentication_provider,
            parse_node_factory=parse_node_factory,
            serialization_writer_factory=serialization_writer_factory,
            http_client=client_factory.create_with_config(config),
            base_url=config.base_url,
        )
        adapter._owns_client = True
        return adapter

    async def __aenter__(self) -> "HttpxRequestAdapter":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if the adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def serialization_writer_factory(self) -> SerializationWriterFactory:
        return self._serialization_writer_factory

    @property
    def parse_node_factory(self) -> ParseNodeFactory:
        return self._parse_node_factory

    @property
    def backing_store_factories(self) -> BackingStoreFactoryHolder:
        return self._backing_store_factories

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send(
        self,
        request_info: RequestInformation,
        factory: ParsableFactory[T],
        error_map: ErrorMapping | None = None,
        response_handler: ResponseHandler | None = None,
    ) -> T | None:
        """Send a request and deserialize the response into a single model."""
        response = await self._get_http_response(request_info)
        if response_handler is not None:
            return await response_handler.handle_response_async(response, error_map)
        try:
            await self._throw_failed_response(response, error_map)
            if await self._has_no_body(response):
                return None
            root_node = await self._get_root_parse_node(response)
            return root_node.get_object_value(factory)
        finally:
            await self._drain(response)

    async def send_collection(
        self,
        request_info: RequestInformation,
        factory: ParsableFactory[T],
        error_map: ErrorMapping | None = None,
        response_handler: ResponseHandler | None = None,
    ) -> list[T] | None:
        """Send a request and deserialize the response into a list of models."""
        response = await self._get_http_response(request_info)
        if response_handler is not None:
            return await response_handler.handle_response_async(response, error_map)
        try:
            await self._throw_failed_response(response, error_map)
            if await self._has_no_body(response):
                return None
            root_node = await self._get_root_parse_node(response)
            return root_node.get_collection_of_object_values(factory)
        finally:
            await self._drain(response)

    async def send_collection_of_primitive(
        self,
        request_info: RequestInformation,
        primitive_kind: PrimitiveKind | str,
        error_map: ErrorMapping | None = None,
        response_handler: ResponseHandler | None = None,
    ) -> list[Any] | None:
        """Send a request and deserialize the response into a list of scalars."""
        kind = self._resolve_primitive_kind(primitive_kind)
        response = await self._get_http_response(request_info)
        if response_handler is not None:
            return await response_handler.handle_response_async(response, error_map)
        try:
            await self._throw_failed_response(response, error_map)
            if await self._has_no_body(response):
                return None
            root_node = await self._get_root_parse_node(response)
            return root_node.get_collection_of_primitive_values(kind)
        finally:
            await self._drain(response)

    async def send_primitive(
        self,
        request_info: RequestInformation,
        primitive_kind: PrimitiveKind | str,
        error_map: ErrorMapping | None = None,
        response_handler: ResponseHandler | None = None,
    ) -> Any:
        """Send a request and return a scalar, or the open response for STREAM.

        For PrimitiveKind.STREAM the returned httpx.Response has an unread
        body; the caller reads it (aread/aiter_bytes) and must aclose() it.

        Raises:
            RequestAdapterError: If primitive_kind is not a supported kind.
        """
        kind = self._resolve_primitive_kind(primitive_kind)
        response = await self._get_http_response(request_info)
        if response_handler is not None:
            return await response_handler.handle_response_async(response, error_map)

        if kind is PrimitiveKind.STREAM:
            hand_over = False
            try:
                await self._throw_failed_response(response, error_map)
                if self._is_no_content_status(response):
                    return None
                hand_over = True
                return response
            finally:
                if not hand_over:
                    await self._drain(response)

        try:
            await self._throw_failed_response(response, error_map)
            if await self._has_no_body(response):
                return None
            root_node = await self._get_root_parse_node(response)
            return _PRIMITIVE_GETTERS[kind](root_node)
        finally:
            await self._drain(response)

    async def send_no_content(
        self,
        request_info: RequestInformation,
        error_map: ErrorMapping | None = None,
        response_handler: ResponseHandler | None = None,
    ) -> None:
        """Send a request whose successful response carries nothing of interest."""
        response = await self._get_http_response(request_info)
        if response_handler is not None:
            await response_handler.handle_response_async(response, error_map)
            return
        try:
            await self._throw_failed_response(response, error_map)
        finally:
            await self._drain(response)

    @staticmethod
    def _resolve_primitive_kind(primitive_kind: PrimitiveKind | str) -> PrimitiveKind:
        try:
            return PrimitiveKind(primitive_kind)
        except ValueError as e:
            raise RequestAdapterError(
                f"Error handling the response, unexpected type '{primitive_kind}'"
            ) from e

    # -------------------------------------------------------------------------
    # Send lifecycle
    # -------------------------------------------------------------------------

    async def _get_http_response(self, request_info: RequestInformation) -> httpx.Response:
        """Authenticate and send, re-authenticating once on a claims challenge."""
        if request_info is None:
            raise ValueError("request_info cannot be None")
        self._set_base_url_for_request_information(request_info)

        claims: str | None = None
        while True:
            response = await self._send_authenticated(request_info, claims)
            if claims is not None:
                # Already retried with claims; never retry twice
                return response
            retry_claims = self._get_retry_claims(response, request_info)
            if retry_claims is None:
                return response
            logger.info(
                "Received claims challenge for %s %s, re-authenticating",
                request_info.http_method.value, response.request.url,
            )
            request_info.rewind_content()
            await self._drain(response)
            claims = retry_claims

    async def _send_authenticated(
        self, request_info: RequestInformation, claims: str | None
    ) -> httpx.Response:
        additional_context = {CLAIMS_KEY: claims} if claims else None
        await self._authentication_provider.authenticate_request(request_info, additional_context)

        request = self.get_request_from_request_information(request_info)
        logger.debug("Sending %s %s", request.method, request.url)
        response = await self._client.send(request, stream=True)
        if response is None:
            raise RequestAdapterError("Could not get a response after calling the service")
        return response

    @staticmethod
    def _get_retry_claims(
        response: httpx.Response, request_info: RequestInformation
    ) -> str | None:
        if response.status_code != 401:
            return None
        if not request_info.content_is_replayable:
            return None
        claims = get_claims_from_response(response)
        return claims or None

    def _set_base_url_for_request_information(self, request_info: RequestInformation) -> None:
        if self.base_url and BASE_URL_KEY not in request_info.path_parameters:
            request_info.path_parameters[BASE_URL_KEY] = self.base_url

    # -------------------------------------------------------------------------
    # Request conversion
    # -------------------------------------------------------------------------

    def get_request_from_request_information(
        self, request_info: RequestInformation
    ) -> httpx.Request:
        """Build the httpx.Request for a RequestInformation.

        Also injects the base URL, so it can be called on its own.
        """
        self._set_base_url_for_request_information(request_info)

        headers: list[tuple[str, str]] = []
        for name, values in request_info.headers.items():
            for value in values:
                headers.append((name, value))

        stream: RequestContentStream | None = None
        if request_info.content is not None:
            stream = RequestContentStream(request_info.content)
            header_names = {name.lower() for name, _ in headers}
            if "content-length" not in header_names and "transfer-encoding" not in header_names:
                length = stream.remaining_length()
                if length is None:
                    headers.append(("Transfer-Encoding", "chunked"))
                else:
                    headers.append(("Content-Length", str(length)))

        request = self._client.build_request(
            request_info.http_method.value.upper(),
            request_info.url,
            headers=headers,
            extensions=request_info.request_options.to_extensions(),
        )
        if stream is None:
            return request
        # build_request buffers an empty body; the stream must be set at construction
        return httpx.Request(
            request.method,
            request.url,
            headers=request.headers,
            stream=stream,
            extensions=request.extensions,
        )

    async def convert_to_native(self, request_info: RequestInformation) -> httpx.Request:
        """Authenticate a RequestInformation and return the httpx.Request for it."""
        if request_info is None:
            raise ValueError("request_info cannot be None")
        self._set_base_url_for_request_information(request_info)
        await self._authentication_provider.authenticate_request(request_info, None)
        return self.get_request_from_request_information(request_info)

    # -------------------------------------------------------------------------
    # Response handling
    # -------------------------------------------------------------------------

    @staticmethod
    def _is_no_content_status(response: httpx.Response) -> bool:
        return (
            response.status_code in NO_CONTENT_STATUS_CODES
            or response.headers.get("content-length") == "0"
        )

    async def _has_no_body(self, response: httpx.Response) -> bool:
        if self._is_no_content_status(response):
            return True
        return not await response.aread()

    async def _throw_failed_response(
        self, response: httpx.Response, error_map: ErrorMapping | None
    ) -> None:
        if response.is_success:
            return

        status_code = response.status_code
        status_code_str = str(status_code)
        response_headers = _headers_as_dict(response.headers)

        error_factory = None
        if error_map:
            error_factory = error_map.get(status_code_str)
            if error_factory is None and 400 <= status_code < 500:
                error_factory = error_map.get("4XX")
            if error_factory is None and 500 <= status_code < 600:
                error_factory = error_map.get("5XX")
        if error_factory is None:
            raise ApiError(
                "The server returned an unexpected status code and no error factory "
                f"is registered for this code: {status_code_str}",
                status_code,
                response_headers,
            )

        root_node = await self._get_root_parse_node(response)
        error = root_node.get_object_value(error_factory)
        if not isinstance(error, Exception):
            raise ApiError(
                "The server returned an unexpected status code and the error registered "
                f"for this code failed to deserialize: {status_code_str}",
                status_code,
                response_headers,
            )
        if isinstance(error, ApiError):
            error.response_status_code = status_code
            error.response_headers = response_headers
        raise error

    async def _get_root_parse_node(self, response: httpx.Response) -> ParseNode:
        content_type = response.headers.get("content-type")
        if not content_type or not clean_content_type(content_type):
            raise ApiError(
                "No response content type header for deserialization",
                response.status_code,
                _headers_as_dict(response.headers),
            )
        content = await response.aread()
        return self._parse_node_factory.get_root_parse_node(clean_content_type(content_type), content)

    @staticmethod
    async def _drain(response: httpx.Response) -> None:
        """Read whatever is left of the body, then release the connection."""
        try:
            if not response.is_closed:
                await response.aread()
        finally:
            await response.aclose()

    # -------------------------------------------------------------------------
    # Backing store
    # -------------------------------------------------------------------------

    def enable_backing_store(self, backing_store_factory: BackingStoreFactory | None = None) -> None:
        """Switch to backing-store-aware factories and install a store factory.

        Raises:
            RequestAdapterError: If the backing store was already enabled on
                this adapter.
        """
        if self._backing_store_enabled:
            raise RequestAdapterError("The backing store is already enabled for this adapter")
        self._parse_node_factory = BackingStoreParseNodeFactory(self._parse_node_factory)
        self._serialization_writer_factory = BackingStoreSerializationWriterFactory(
            self._serialization_writer_factory
        )
        if backing_store_factory is not None:
            self._backing_store_factories.replace(backing_store_factory)
        self._backing_store_enabled = True
