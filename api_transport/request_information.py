"""Protocol-agnostic description of one API call.

Generated request builders fill in a RequestInformation; the request adapter
turns it into an httpx.Request. The URL is produced from an RFC 6570
template unless a raw URL has been set explicitly.
"""

from __future__ import annotations

import datetime
import uuid
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field

from api_transport.models import HttpMethod
from api_transport.request_options import RequestOption, RequestOptionBag
from api_transport.uri_template import expand

# Reserved path parameter keys
RAW_URL_KEY = "request-raw-url"
BASE_URL_KEY = "baseurl"

CONTENT_TYPE_HEADER = "content-type"
BINARY_CONTENT_TYPE = "application/octet-stream"


def _template_value(value: Any) -> Any:
    """Convert a parameter value into the str/list form the template expects."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return _template_value(value.value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (list, tuple, set)):
        return [_template_value(item) for item in value if item is not None]
    if isinstance(value, dict):
        return {key: _template_value(item) for key, item in value.items()}
    return str(value)


class RequestInformation(BaseModel):
    """One abstract request: method, URL template, parameters, headers, body.

    Header names are stored lowercase; values are arrays to support repeated
    headers. Content is a binary file-like object owned by the caller.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    http_method: HttpMethod = Field(default=HttpMethod.GET, description="HTTP method")
    url_template: str | None = Field(default=None, description="RFC 6570 URL template")
    path_parameters: dict[str, Any] = Field(
        default_factory=dict, description="Template variables for the path"
    )
    query_parameters: dict[str, Any] = Field(
        default_factory=dict, description="Template variables for the query; None means omit"
    )
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Request headers (lowercase keys, array values)"
    )
    content: Any = Field(default=None, description="Binary file-like request body")
    request_options: RequestOptionBag = Field(
        default_factory=RequestOptionBag, description="Request-scoped middleware options"
    )

    @property
    def url(self) -> str:
        """The request URL: the raw URL if one was set, else the expanded template."""
        raw_url = self.path_parameters.get(RAW_URL_KEY)
        if raw_url:
            return str(raw_url)
        if not self.url_template:
            raise ValueError("url_template cannot be empty when no raw URL is set")
        if "{+baseurl}" in self.url_template and not self.path_parameters.get(BASE_URL_KEY):
            raise ValueError("path_parameters must contain a value for 'baseurl'")

        variables: dict[str, Any] = {}
        for key, value in self.path_parameters.items():
            variables[key] = _template_value(value)
        for key, value in self.query_parameters.items():
            variables[key] = _template_value(value)
        return expand(self.url_template, variables)

    def set_url(self, url: str) -> None:
        """Use a fully-formed URL, bypassing the template and query parameters."""
        self.query_parameters.clear()
        self.path_parameters.clear()
        self.path_parameters[RAW_URL_KEY] = url

    def add_header(self, name: str, value: str) -> None:
        self.headers.setdefault(name.lower(), []).append(value)

    def try_add_header(self, name: str, value: str) -> bool:
        """Add a header only if no header with that name exists yet."""
        key = name.lower()
        if key in self.headers:
            return False
        self.headers[key] = [value]
        return True

    def remove_header(self, name: str) -> None:
        self.headers.pop(name.lower(), None)

    def get_header(self, name: str) -> list[str]:
        return self.headers.get(name.lower(), [])

    def set_stream_content(self, stream: Any, content_type: str = BINARY_CONTENT_TYPE) -> None:
        """Attach a binary stream as the body and declare its content type."""
        self.content = stream
        self.headers[CONTENT_TYPE_HEADER] = [content_type]

    def add_request_options(self, options: Iterable[RequestOption]) -> None:
        for option in options:
            self.request_options.add(option)

    def remove_request_options(self, *option_kinds: type[RequestOption]) -> None:
        for option_kind in option_kinds:
            self.request_options.remove(option_kind)

    @property
    def content_is_replayable(self) -> bool:
        """True when there is no body, or the body can be rewound."""
        if self.content is None:
            return True
        seekable = getattr(self.content, "seekable", None)
        return bool(seekable and seekable())

    def rewind_content(self) -> None:
        if self.content is not None and self.content_is_replayable:
            self.content.seek(0)
