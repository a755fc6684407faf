"""Request options - per-request overrides of middleware defaults.

Every middleware stage has a default configuration object. A request can
carry its own instance of the same option kind, which then wins over the
middleware default for that one call. Option kinds are identified by a
stable string key (``option_key``) rather than by runtime type lookups, so
options survive the hop onto ``httpx.Request.extensions``.
"""

from __future__ import annotations

from typing import Any, ClassVar, Iterable, Iterator, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict

T = TypeVar("T", bound="RequestOption")


class RequestOption(BaseModel):
    """Base class for all request options.

    Subclasses set ``option_key`` to a unique, stable identifier. Exactly one
    instance per key can be attached to a request.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    option_key: ClassVar[str] = ""

    @classmethod
    def get_key(cls) -> str:
        if not cls.option_key:
            raise TypeError(f"{cls.__name__} does not define an option_key")
        return cls.option_key


class RequestOptionBag:
    """Mapping of option key -> option instance for a single request.

    Usage:
        bag = RequestOptionBag()
        bag.add(UserAgentHandlerOption(product_name="my-sdk"))
        option = bag.get(UserAgentHandlerOption)
    """

    def __init__(self, options: Iterable[RequestOption] | None = None) -> None:
        self._options: dict[str, RequestOption] = {}
        for option in options or ():
            self.add(option)

    def add(self, option: RequestOption) -> None:
        """Attach an option, replacing any existing option of the same kind."""
        if not isinstance(option, RequestOption):
            raise TypeError(f"Expected a RequestOption, got {type(option).__name__}")
        self._options[option.get_key()] = option

    def remove(self, option_kind: type[RequestOption]) -> None:
        self._options.pop(option_kind.get_key(), None)

    def get(self, option_kind: type[T]) -> T | None:
        """Return the option of the given kind, or None when absent.

        Raises:
            TypeError: If an object stored under the kind's key is not an
                instance of that kind.
        """
        value = self._options.get(option_kind.get_key())
        if value is None:
            return None
        if not isinstance(value, option_kind):
            raise TypeError(
                f"Request option '{option_kind.get_key()}' holds "
                f"{type(value).__name__}, expected {option_kind.__name__}"
            )
        return value

    def to_extensions(self) -> dict[str, Any]:
        """Render the bag as httpx request extensions."""
        return dict(self._options)

    def __contains__(self, option_kind: object) -> bool:
        if isinstance(option_kind, type) and issubclass(option_kind, RequestOption):
            return option_kind.get_key() in self._options
        return False

    def __iter__(self) -> Iterator[RequestOption]:
        return iter(list(self._options.values()))

    def __len__(self) -> int:
        return len(self._options)


def get_request_option(request: httpx.Request, option_kind: type[T]) -> T | None:
    """Look up a request-scoped option attached to a wire request.

    Raises:
        TypeError: If the extension under the option's key has the wrong type.
    """
    value = request.extensions.get(option_kind.get_key())
    if value is None:
        return None
    if not isinstance(value, option_kind):
        raise TypeError(
            f"Request extension '{option_kind.get_key()}' holds "
            f"{type(value).__name__}, expected {option_kind.__name__}"
        )
    return value


def resolve_option(request: httpx.Request, default: T) -> T:
    """Request-scoped option if present, else the middleware default."""
    override = get_request_option(request, type(default))
    return override if override is not None else default
