"""Tests for RFC 6570 URI template expansion."""

import pytest

from api_transport.uri_template import UriTemplateError, expand

VARIABLES = {
    "var": "value",
    "hello": "Hello World!",
    "path": "/foo/bar",
    "list": ["red", "green", "blue"],
    "keys": {"semi": ";", "dot": ".", "comma": ","},
    "empty": "",
    "undef": None,
}


class TestSimpleExpansion:
    """Level 1 and 2 expressions."""

    def test_simple_string(self) -> None:
        """Simple expansion percent-encodes reserved characters."""
        assert expand("{var}", VARIABLES) == "value"
        assert expand("{hello}", VARIABLES) == "Hello%20World%21"

    def test_reserved_expansion(self) -> None:
        """'+' keeps reserved characters such as '/'."""
        assert expand("{+path}/here", VARIABLES) == "/foo/bar/here"
        assert expand("{+hello}", VARIABLES) == "Hello%20World!"

    def test_reserved_keeps_pct_triplets(self) -> None:
        """Reserved expansion does not double-encode existing escapes."""
        assert expand("{+var}", {"var": "a%20b"}) == "a%20b"

    def test_base_url(self) -> None:
        """A base URL survives reserved expansion intact."""
        assert expand("{+baseurl}/me", {"baseurl": "http://localhost"}) == "http://localhost/me"

    def test_fragment(self) -> None:
        assert expand("{#path}", VARIABLES) == "#/foo/bar"


class TestQueryExpansion:
    """Form-style query expressions."""

    def test_undefined_variables_omitted(self) -> None:
        """None values produce no 'name=' token at all."""
        assert expand("/me{?var,undef}", VARIABLES) == "/me?var=value"

    def test_all_undefined_omits_question_mark(self) -> None:
        """An expression with no defined variables expands to nothing."""
        assert expand("/me{?undef}", VARIABLES) == "/me"

    def test_empty_string_keeps_equals(self) -> None:
        assert expand("{?empty}", VARIABLES) == "?empty="

    def test_list_is_comma_joined(self) -> None:
        """Non-exploded lists render as name=a,b,c."""
        assert expand("{?list}", VARIABLES) == "?list=red,green,blue"

    def test_exploded_list(self) -> None:
        assert expand("{?list*}", VARIABLES) == "?list=red&list=green&list=blue"

    def test_continuation(self) -> None:
        assert expand("/me?fixed=1{&var}", VARIABLES) == "/me?fixed=1&var=value"

    def test_empty_list_is_undefined(self) -> None:
        assert expand("{?list}", {"list": []}) == ""

    def test_exploded_dict(self) -> None:
        assert expand("{?keys*}", VARIABLES) == "?semi=%3B&dot=.&comma=%2C"

    def test_pct_encoded_variable_name(self) -> None:
        """Names may carry percent-encoded characters such as %24 for '$'."""
        assert expand("/users{?%24top}", {"%24top": "5"}) == "/users?%24top=5"


class TestOtherOperators:
    def test_path_segments(self) -> None:
        assert expand("{/list*}", VARIABLES) == "/red/green/blue"

    def test_label(self) -> None:
        assert expand("X{.var}", VARIABLES) == "X.value"

    def test_path_parameters(self) -> None:
        assert expand("{;list}", VARIABLES) == ";list=red,green,blue"

    def test_prefix_modifier(self) -> None:
        assert expand("{var:3}", VARIABLES) == "val"


class TestMalformed:
    def test_empty_expression(self) -> None:
        with pytest.raises(UriTemplateError):
            expand("/me{}", VARIABLES)

    def test_invalid_varspec(self) -> None:
        with pytest.raises(UriTemplateError):
            expand("/me{?bad name}", VARIABLES)
