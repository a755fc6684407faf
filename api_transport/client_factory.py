"""Client factory - builds middleware chains and the httpx clients that run them.

The default pipeline order is part of the public contract:

    UriReplacementHandler -> RetryHandler -> RedirectHandler ->
    ParametersNameDecodingHandler -> UserAgentHandler ->
    HeadersInspectionHandler -> transport

Consumers that need to insert or swap a single stage use
get_default_handler_types() to locate it instead of rebuilding the list.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

import httpx

from api_transport.handlers import (
    HeadersInspectionHandler,
    ParametersNameDecodingHandler,
    UriReplacementHandler,
    UserAgentHandler,
)
from api_transport.middleware import BaseMiddleware, MiddlewarePipeline, NextHandler
from api_transport.models import (
    HeadersInspectionHandlerOption,
    ParametersNameDecodingOption,
    RedirectHandlerOption,
    RetryHandlerOption,
    TransportConfig,
    UriReplacementHandlerOption,
    UserAgentHandlerOption,
)
from api_transport.request_options import RequestOption
from api_transport.retry_handlers import RedirectHandler, RetryHandler

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 100.0

# (handler type, option type it is configured with), in pipeline order
_DEFAULT_PIPELINE: tuple[tuple[type[BaseMiddleware], type[RequestOption]], ...] = (
    (UriReplacementHandler, UriReplacementHandlerOption),
    (RetryHandler, RetryHandlerOption),
    (RedirectHandler, RedirectHandlerOption),
    (ParametersNameDecodingHandler, ParametersNameDecodingOption),
    (UserAgentHandler, UserAgentHandlerOption),
    (HeadersInspectionHandler, HeadersInspectionHandlerOption),
)


def get_default_handler_types() -> tuple[type[BaseMiddleware], ...]:
    """Handler types of the default pipeline, in order."""
    return tuple(handler_type for handler_type, _ in _DEFAULT_PIPELINE)


def create_default_handlers(
    options: Sequence[RequestOption] | None = None,
) -> list[BaseMiddleware]:
    """Create the default middleware, in pipeline order.

    Args:
        options: Optional handler options. A handler whose option kind
            appears here is constructed with that option; every other
            handler gets its defaults.

    Returns:
        New, unlinked middleware instances.
    """
    by_key: dict[str, RequestOption] = {}
    for option in options or ():
        by_key[option.get_key()] = option

    handlers: list[BaseMiddleware] = []
    for handler_type, option_type in _DEFAULT_PIPELINE:
        option = by_key.get(option_type.get_key())
        if option is not None and not isinstance(option, option_type):
            raise TypeError(
                f"Option for {handler_type.__name__} must be {option_type.__name__}, "
                f"got {type(option).__name__}"
            )
        factory: Callable[..., BaseMiddleware] = handler_type
        handlers.append(factory(option) if option is not None else factory())
    return handlers


def chain_handlers(
    handlers: Sequence[BaseMiddleware],
    final_handler: NextHandler | None = None,
) -> BaseMiddleware | None:
    """Link handlers in the given order and return the first one.

    Each handler's ``next`` becomes the following handler. The last handler's
    ``next`` is set to ``final_handler`` when one is given, and otherwise
    left as it was, which allows appending to a partially wired chain.

    Returns:
        The first handler, or None when ``handlers`` is empty.
    """
    if not handlers:
        return None
    for previous, current in zip(handlers, handlers[1:]):
        previous.next = current
    if final_handler is not None:
        handlers[-1].next = final_handler
    logger.debug(
        "Built middleware chain: %s",
        " -> ".join(type(handler).__name__ for handler in handlers),
    )
    return handlers[0]


def get_default_transport(proxy: str | None = None) -> httpx.AsyncHTTPTransport:
    """Network transport at the tail of the pipeline. It never follows redirects."""
    return httpx.AsyncHTTPTransport(proxy=proxy)


def create(
    handlers: Sequence[BaseMiddleware] | None = None,
    final_handler: httpx.AsyncBaseTransport | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient whose transport runs the middleware chain.

    Args:
        handlers: Custom middleware in order. The default pipeline is used
            when None or empty.
        final_handler: Terminal transport. Defaults to get_default_transport().
        timeout: Request timeout in seconds.
    """
    if not handlers:
        handlers = create_default_handlers()
    terminal = final_handler or get_default_transport()
    first = chain_handlers(list(handlers), terminal)
    transport: httpx.AsyncBaseTransport = MiddlewarePipeline(first) if first else terminal
    return httpx.AsyncClient(transport=transport, timeout=timeout, follow_redirects=False)


def create_with_config(
    config: TransportConfig,
    final_handler: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create a client with the default pipeline configured from a TransportConfig."""
    handlers = create_default_handlers(config.handler_options())
    terminal = final_handler or get_default_transport(config.proxy or None)
    return create(handlers, terminal, timeout=config.timeout_seconds)
