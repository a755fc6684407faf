"""Internal data models for api-transport.

All models use Pydantic v2. Handler options double as request options: the
same model configures a middleware's defaults and, attached to a single
request, overrides them for that call.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, ClassVar

import httpx
from pydantic import BaseModel, ConfigDict, Field

from api_transport.request_options import RequestOption

PACKAGE_VERSION = "0.1.0"


# =============================================================================
# Request Description Enums
# =============================================================================


class HttpMethod(str, Enum):
    """HTTP methods a request description can carry."""

    GET = "GET"
    POST = "POST"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    CONNECT = "CONNECT"
    PUT = "PUT"
    TRACE = "TRACE"
    HEAD = "HEAD"


class PrimitiveKind(str, Enum):
    """Scalar response shapes the request adapter can produce.

    STREAM is not deserialized: the open response is handed to the caller.
    """

    BOOL = "bool"
    BYTE = "byte"
    SBYTE = "sbyte"
    STR = "str"
    INT = "int"
    FLOAT = "float"
    LONG = "long"
    DOUBLE = "double"
    DECIMAL = "decimal"
    UUID = "uuid"
    DATETIME = "datetime"
    TIMEDELTA = "timedelta"
    DATE = "date"
    STREAM = "stream"


# =============================================================================
# Handler Options
# =============================================================================


class UriReplacementHandlerOption(RequestOption):
    """Rules for rewriting segments of the request path.

    Pairs are applied in insertion order, so overlapping keys should be
    listed most-specific first.
    """

    option_key: ClassVar[str] = "api_transport.uri_replacement"

    enabled: bool = Field(default=True, description="Whether replacement runs at all")
    replacement_pairs: dict[str, str] = Field(
        default_factory=dict, description="Path substring -> replacement"
    )

    def is_enabled(self) -> bool:
        return self.enabled

    def replace(self, url: httpx.URL | None) -> httpx.URL | None:
        if url is None:
            return None
        if not self.enabled or not self.replacement_pairs:
            return url
        path = url.path
        for key, value in self.replacement_pairs.items():
            path = path.replace(key, value)
        return url.copy_with(path=path)


class ParametersNameDecodingOption(RequestOption):
    """Characters to restore in query parameter names.

    RFC 6570 variable names cannot contain characters such as '$' or '-', so
    generated templates carry them percent-encoded (e.g. '%24select').
    """

    option_key: ClassVar[str] = "api_transport.parameters_name_decoding"

    enabled: bool = Field(default=True, description="Whether decoding runs at all")
    characters_to_decode: list[str] = Field(
        default_factory=lambda: ["$", ".", "-", "~"],
        description="Single characters whose %XX form is decoded in parameter names",
    )


class UserAgentHandlerOption(RequestOption):
    """Product token appended to the User-Agent header."""

    option_key: ClassVar[str] = "api_transport.user_agent"

    enabled: bool = Field(default=True, description="Whether the token is added")
    product_name: str = Field(default="api-transport-python", min_length=1)
    product_version: str = Field(default=PACKAGE_VERSION, min_length=1)


class HeadersInspectionHandlerOption(RequestOption):
    """Opt-in capture of request and response headers.

    Captured header names are lowercase and values are arrays, one entry per
    header line. The maps are filled in place; callers keep a reference to
    the option and read them after the call.
    """

    option_key: ClassVar[str] = "api_transport.headers_inspection"

    inspect_request_headers: bool = Field(default=False)
    inspect_response_headers: bool = Field(default=False)
    request_headers: dict[str, list[str]] = Field(default_factory=dict)
    response_headers: dict[str, list[str]] = Field(default_factory=dict)


def _always(*_args: Any) -> bool:
    return True


class RetryHandlerOption(RequestOption):
    """Retry policy for throttled or unavailable responses."""

    option_key: ClassVar[str] = "api_transport.retry"

    max_retries: int = Field(default=3, ge=0, le=10, description="Retries after the first attempt")
    delay_seconds: float = Field(
        default=3.0, ge=0, le=180, description="Base delay when no Retry-After is given"
    )
    retry_status_codes: set[int] = Field(
        default_factory=lambda: {429, 503, 504}, description="Statuses worth retrying"
    )
    should_retry: Callable[[float, int, httpx.Response], bool] = Field(
        default=_always,
        exclude=True,
        description="Veto hook called with (delay, attempt, response)",
    )


class RedirectHandlerOption(RequestOption):
    """Redirect-following policy."""

    option_key: ClassVar[str] = "api_transport.redirect"

    max_redirects: int = Field(default=5, ge=0, le=20)
    should_redirect: Callable[[httpx.Response], bool] = Field(default=_always, exclude=True)
    allow_redirect_on_scheme_change: bool = Field(default=False)


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class TransportConfig(BaseModel):
    """Top-level transport configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    base_url: str | None = Field(default=None, description="Base URL injected as {+baseurl}")
    timeout_seconds: float = Field(default=100.0, gt=0, description="Per-request timeout")
    proxy: str | None = Field(default=None, description="Proxy URL for the default transport")
    user_agent: UserAgentHandlerOption = Field(default_factory=UserAgentHandlerOption)
    retry: RetryHandlerOption = Field(default_factory=RetryHandlerOption)
    redirect: RedirectHandlerOption = Field(default_factory=RedirectHandlerOption)
    parameters_name_decoding: ParametersNameDecodingOption = Field(
        default_factory=ParametersNameDecodingOption
    )
    uri_replacement: UriReplacementHandlerOption = Field(
        default_factory=UriReplacementHandlerOption
    )

    def handler_options(self) -> list[RequestOption]:
        """Options in a form accepted by client_factory.create_default_handlers."""
        return [
            self.uri_replacement,
            self.retry,
            self.redirect,
            self.parameters_name_decoding,
            self.user_agent,
        ]
