"""Tests for RequestInformation: URL building, headers, content and options."""

import datetime
import io
import uuid
from enum import Enum

import pytest

from api_transport.models import HttpMethod, RetryHandlerOption, UserAgentHandlerOption
from api_transport.request_information import RAW_URL_KEY, RequestInformation

QUERY_TEMPLATE = "http://localhost/me{?top,skip,search,filter,count,orderby,select}"


class Color(Enum):
    RED = "red"


class NonSeekable:
    def read(self, size: int = -1) -> bytes:
        return b""

    def seekable(self) -> bool:
        return False


class TestUrl:
    """Tests for the url property."""

    def test_base_url_template(self) -> None:
        """{+baseurl} expands to the base URL."""
        info = RequestInformation(
            url_template="{+baseurl}/me", path_parameters={"baseurl": "http://localhost"}
        )
        assert info.url == "http://localhost/me"

    def test_query_parameters(self) -> None:
        """Lists join with commas, booleans render lowercase, None is omitted."""
        info = RequestInformation(
            url_template=QUERY_TEMPLATE,
            query_parameters={"select": ["id", "displayName"], "count": True, "skip": None},
        )
        url = info.url

        assert "select=id,displayName" in url
        assert "count=true" in url
        assert "skip" not in url

    def test_numeric_query_parameter(self) -> None:
        info = RequestInformation(url_template=QUERY_TEMPLATE, query_parameters={"skip": 10})
        assert info.url == "http://localhost/me?skip=10"

    def test_typed_path_parameters(self) -> None:
        """Enums, UUIDs and dates render their canonical text."""
        item_id = uuid.UUID("12345678-1234-5678-1234-567812345678")
        info = RequestInformation(
            url_template="http://localhost/{color}/{id}/{day}",
            path_parameters={
                "color": Color.RED,
                "id": item_id,
                "day": datetime.date(2024, 1, 31),
            },
        )
        assert info.url == f"http://localhost/red/{item_id}/2024-01-31"

    def test_raw_url_wins(self) -> None:
        """set_url bypasses the template and clears query parameters."""
        info = RequestInformation(url_template=QUERY_TEMPLATE, query_parameters={"top": 1})
        info.set_url("http://localhost/raw?x=1")

        assert info.url == "http://localhost/raw?x=1"
        assert info.query_parameters == {}
        assert info.path_parameters == {RAW_URL_KEY: "http://localhost/raw?x=1"}

    def test_missing_template_raises(self) -> None:
        with pytest.raises(ValueError, match="url_template"):
            RequestInformation().url

    def test_missing_base_url_raises(self) -> None:
        """A {+baseurl} template without a baseurl parameter is rejected."""
        with pytest.raises(ValueError, match="baseurl"):
            RequestInformation(url_template="{+baseurl}/me").url


class TestHeaders:
    """Header helpers are case-insensitive and keep repeated values."""

    def test_add_header_accumulates(self) -> None:
        info = RequestInformation()
        info.add_header("Accept", "application/json")
        info.add_header("accept", "text/plain")

        assert info.get_header("ACCEPT") == ["application/json", "text/plain"]

    def test_try_add_header(self) -> None:
        """try_add_header never overwrites an existing header."""
        info = RequestInformation()

        assert info.try_add_header("X-Id", "1") is True
        assert info.try_add_header("x-id", "2") is False
        assert info.get_header("x-id") == ["1"]

    def test_remove_header(self) -> None:
        info = RequestInformation()
        info.add_header("X-Id", "1")
        info.remove_header("X-ID")

        assert info.get_header("x-id") == []


class TestContent:
    def test_set_stream_content(self) -> None:
        """Stream content defaults to application/octet-stream."""
        info = RequestInformation()
        body = io.BytesIO(b"data")
        info.set_stream_content(body)

        assert info.content is body
        assert info.get_header("content-type") == ["application/octet-stream"]

    def test_replayable_content(self) -> None:
        """No content or seekable content can be replayed; a pipe cannot."""
        info = RequestInformation()
        assert info.content_is_replayable is True

        info.content = io.BytesIO(b"data")
        assert info.content_is_replayable is True

        info.content = NonSeekable()
        assert info.content_is_replayable is False

    def test_rewind_content(self) -> None:
        info = RequestInformation()
        info.set_stream_content(io.BytesIO(b"data"))
        info.content.read()
        info.rewind_content()

        assert info.content.read() == b"data"


class TestRequestOptions:
    def test_add_and_remove(self) -> None:
        info = RequestInformation(http_method=HttpMethod.POST)
        info.add_request_options([RetryHandlerOption(), UserAgentHandlerOption()])
        info.remove_request_options(RetryHandlerOption)

        assert RetryHandlerOption not in info.request_options
        assert UserAgentHandlerOption in info.request_options
