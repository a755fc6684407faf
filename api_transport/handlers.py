"""Concrete middleware: URI replacement, parameter-name decoding,
user-agent tagging and headers inspection.

Each handler is built with a default option and looks for a request-scoped
option of the same kind on every call; a request-scoped option always wins.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from api_transport.middleware import BaseMiddleware
from api_transport.models import (
    HeadersInspectionHandlerOption,
    ParametersNameDecodingOption,
    UriReplacementHandlerOption,
    UserAgentHandlerOption,
)
from api_transport.request_options import get_request_option, resolve_option

logger = logging.getLogger(__name__)


class UriReplacement(Protocol):
    """Capability used by UriReplacementHandler."""

    def is_enabled(self) -> bool: ...

    def replace(self, url: httpx.URL | None) -> httpx.URL | None: ...


class UriReplacementHandler(BaseMiddleware):
    """Rewrites parts of the request path before sending."""

    def __init__(self, uri_replacement: UriReplacement | None = None) -> None:
        super().__init__()
        self.uri_replacement: UriReplacement = uri_replacement or UriReplacementHandlerOption()

    async def send(self, request: httpx.Request) -> httpx.Response:
        replacement: UriReplacement = (
            get_request_option(request, UriReplacementHandlerOption) or self.uri_replacement
        )
        if replacement.is_enabled():
            replaced = replacement.replace(request.url)
            if replaced is not None and replaced != request.url:
                logger.debug("Replaced request path %s -> %s", request.url.path, replaced.path)
                request.url = replaced
        return await self.send_to_next(request)


def decode_parameter_names(query: str, characters: list[str]) -> str:
    """Decode %XX forms of the given characters inside query parameter names.

    Values are left untouched, so '%20' or '%24' inside a value survive.

    Args:
        query: Raw query string without the leading '?'.
        characters: Single characters to restore, e.g. ['$', '-'].

    Returns:
        The query with decoded parameter names.
    """
    symbols = [(f"%{ord(char):02X}", char) for char in characters]
    segments = []
    for segment in query.split("&"):
        name, separator, value = segment.partition("=")
        if "%" in name:
            for encoded, char in symbols:
                name = name.replace(encoded, char)
        segments.append(f"{name}{separator}{value}")
    return "&".join(segments)


class ParametersNameDecodingHandler(BaseMiddleware):
    """Restores characters in query parameter names that RFC 6570 forced us to encode."""

    def __init__(self, options: ParametersNameDecodingOption | None = None) -> None:
        super().__init__()
        self.options = options or ParametersNameDecodingOption()

    async def send(self, request: httpx.Request) -> httpx.Response:
        options = resolve_option(request, self.options)
        query = request.url.query.decode("ascii")

        if (
            "%" not in query
            or not options.enabled
            or not options.characters_to_decode
        ):
            return await self.send_to_next(request)

        encoded_forms = [f"%{ord(char):02X}" for char in options.characters_to_decode]
        if not any(form in query for form in encoded_forms):
            return await self.send_to_next(request)

        decoded = decode_parameter_names(query, options.characters_to_decode)
        if decoded != query:
            request.url = request.url.copy_with(query=decoded.encode("ascii"))
        return await self.send_to_next(request)


def _product_names(user_agent: str) -> list[str]:
    """Product names from a User-Agent value, skipping (comments)."""
    names = []
    depth = 0
    for token in user_agent.split():
        if depth or token.startswith("("):
            depth += token.count("(") - token.count(")")
            continue
        names.append(token.split("/", 1)[0])
    return names


class UserAgentHandler(BaseMiddleware):
    """Appends this library's product token to the User-Agent header, once."""

    def __init__(self, options: UserAgentHandlerOption | None = None) -> None:
        super().__init__()
        self.options = options or UserAgentHandlerOption()

    async def send(self, request: httpx.Request) -> httpx.Response:
        options = resolve_option(request, self.options)
        if options.enabled:
            current = " ".join(request.headers.get_list("user-agent"))
            product = options.product_name.lower()
            if not any(name.lower() == product for name in _product_names(current)):
                token = f"{options.product_name}/{options.product_version}"
                request.headers["User-Agent"] = f"{current} {token}".strip()
                logger.debug("Added user agent token %s", token)
        return await self.send_to_next(request)


def _group_headers(headers: httpx.Headers) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for key, value in headers.multi_items():
        grouped.setdefault(key.lower(), []).append(value)
    return grouped


class HeadersInspectionHandler(BaseMiddleware):
    """Copies request and/or response headers into the option's maps.

    Observes only. If the downstream call raises, no response headers are
    captured and the error propagates.
    """

    def __init__(self, options: HeadersInspectionHandlerOption | None = None) -> None:
        super().__init__()
        self.options = options or HeadersInspectionHandlerOption()

    async def send(self, request: httpx.Request) -> httpx.Response:
        options = resolve_option(request, self.options)
        if options.inspect_request_headers:
            options.request_headers.update(_group_headers(request.headers))

        response = await self.send_to_next(request)

        if options.inspect_response_headers:
            options.response_headers.update(_group_headers(response.headers))
        return response
