"""Tests for UriReplacementHandlerOption and UriReplacementHandler."""

import httpx
import pytest

from api_transport.handlers import UriReplacementHandler
from api_transport.models import UriReplacementHandlerOption
from tests.conftest import RecordingTransport


def _chain(handler: UriReplacementHandler) -> RecordingTransport:
    terminal = RecordingTransport()
    handler.next = terminal
    return terminal


class TestUriReplacementOption:
    """Tests for the replacement rules themselves."""

    def test_disabled_returns_url_unchanged(self) -> None:
        """A disabled option never rewrites, even with pairs configured."""
        option = UriReplacementHandlerOption(enabled=False, replacement_pairs={"/users/me": "/me"})
        url = httpx.URL("http://localhost/users/me")

        assert option.replace(url) == url
        assert option.is_enabled() is False

    def test_replace_none(self) -> None:
        """Replacing None yields None whether enabled or not."""
        assert UriReplacementHandlerOption().replace(None) is None
        assert UriReplacementHandlerOption(enabled=False).replace(None) is None

    def test_replace_with_empty_value(self) -> None:
        option = UriReplacementHandlerOption(replacement_pairs={"test": ""})

        assert option.replace(httpx.URL("http://localhost/test")) == httpx.URL("http://localhost/")

    def test_no_match_unchanged(self) -> None:
        option = UriReplacementHandlerOption(replacement_pairs={"/nothing": "/else"})
        url = httpx.URL("http://localhost/users/1")

        assert option.replace(url) == url

    def test_pairs_applied_in_order(self) -> None:
        """Overlapping keys are applied in configuration order."""
        option = UriReplacementHandlerOption(
            replacement_pairs={"/users/me-token-to-replace": "/me", "/me": "/self"}
        )
        url = option.replace(httpx.URL("http://localhost/users/me-token-to-replace/items"))

        assert url.path == "/self/items"

    def test_only_path_is_rewritten(self) -> None:
        """Host, port and query are preserved."""
        option = UriReplacementHandlerOption(replacement_pairs={"/old": "/new"})
        url = option.replace(httpx.URL("https://example.com:8443/old?q=/old"))

        assert str(url) == "https://example.com:8443/new?q=/old"


class TestUriReplacementHandler:
    """Tests for the middleware."""

    @pytest.mark.asyncio
    async def test_rewrites_request_url(self) -> None:
        handler = UriReplacementHandler(
            UriReplacementHandlerOption(replacement_pairs={"/users/me-token-to-replace": "/me"})
        )
        terminal = _chain(handler)
        await handler.send(httpx.Request("GET", "http://localhost/users/me-token-to-replace"))

        assert str(terminal.requests[0].url) == "http://localhost/me"

    @pytest.mark.asyncio
    async def test_request_option_overrides_default(self) -> None:
        """A request-scoped option replaces the handler's rules for that call."""
        handler = UriReplacementHandler(UriReplacementHandlerOption(replacement_pairs={"/a": "/b"}))
        terminal = _chain(handler)
        override = UriReplacementHandlerOption(replacement_pairs={"/a": "/c"})
        request = httpx.Request(
            "GET",
            "http://localhost/a",
            extensions={UriReplacementHandlerOption.option_key: override},
        )
        await handler.send(request)

        assert terminal.requests[0].url.path == "/c"

    @pytest.mark.asyncio
    async def test_disabled_request_option_passes_through(self) -> None:
        handler = UriReplacementHandler(UriReplacementHandlerOption(replacement_pairs={"/a": "/b"}))
        terminal = _chain(handler)
        request = httpx.Request(
            "GET",
            "http://localhost/a",
            extensions={UriReplacementHandlerOption.option_key: UriReplacementHandlerOption(enabled=False)},
        )
        await handler.send(request)

        assert terminal.requests[0].url.path == "/a"

    @pytest.mark.asyncio
    async def test_custom_capability(self) -> None:
        """Any object with is_enabled/replace can drive the handler."""

        class Lowercase:
            def is_enabled(self) -> bool:
                return True

            def replace(self, url: httpx.URL | None) -> httpx.URL | None:
                return None if url is None else url.copy_with(path=url.path.lower())

        handler = UriReplacementHandler(Lowercase())
        terminal = _chain(handler)
        await handler.send(httpx.Request("GET", "http://localhost/USERS"))

        assert terminal.requests[0].url.path == "/users"
