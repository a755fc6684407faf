"""Middleware - the unit of the request pipeline.

A middleware receives an httpx.Request, may change it, forwards it to its
``next`` stage and may inspect or change the response on the way back.
``next`` is either another middleware or a terminal httpx transport; it is
wired by client_factory.chain_handlers, not by the middleware itself.

MiddlewarePipeline exposes a linked chain to httpx as a transport, so the
chain runs inside httpx.AsyncClient.send().
"""

from __future__ import annotations

from typing import Any, AsyncIterator, BinaryIO, Union

import httpx


class MiddlewareError(Exception):
    """Base class for pipeline errors."""


class EmptyResponseError(MiddlewareError):
    """Raised when a pipeline stage produced no response at all."""


NextHandler = Union["BaseMiddleware", httpx.AsyncBaseTransport]


class BaseMiddleware:
    """A pipeline stage. Subclasses override ``send``.

    Middleware instances hold configuration only; per-call state lives on the
    request, so one chain can serve concurrent calls.
    """

    def __init__(self) -> None:
        self.next: NextHandler | None = None

    async def send(self, request: httpx.Request) -> httpx.Response:
        return await self.send_to_next(request)

    async def send_to_next(self, request: httpx.Request) -> httpx.Response:
        if self.next is None:
            raise MiddlewareError(f"{type(self).__name__} has no next handler")
        if isinstance(self.next, BaseMiddleware):
            response = await self.next.send(request)
        else:
            response = await self.next.handle_async_request(request)
        if response is None:
            raise EmptyResponseError(
                f"{type(self.next).__name__} returned no response for {request.method} {request.url}"
            )
        return response

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def get_terminal_handler(first: NextHandler | None) -> httpx.AsyncBaseTransport | None:
    """Walk a chain and return the transport at its tail, if any."""
    handler = first
    while isinstance(handler, BaseMiddleware):
        handler = handler.next
    return handler


class MiddlewarePipeline(httpx.AsyncBaseTransport):
    """httpx transport that runs requests through a middleware chain."""

    def __init__(self, first: BaseMiddleware) -> None:
        self.first = first

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self.first.send(request)
        if response is None:
            raise EmptyResponseError(
                f"Middleware chain returned no response for {request.method} {request.url}"
            )
        return response

    async def aclose(self) -> None:
        terminal = get_terminal_handler(self.first)
        if terminal is not None:
            await terminal.aclose()


# =============================================================================
# Request Bodies
# =============================================================================


class RequestContentStream(httpx.AsyncByteStream):
    """Async body over a binary file-like object.

    A seekable source is rewound to its starting position every time the
    body is iterated, so retries and redirects can resend it.
    """

    CHUNK_SIZE = 65_536

    def __init__(self, source: BinaryIO) -> None:
        self._source = source
        self._seekable = bool(getattr(source, "seekable", None) and source.seekable())
        self._start = source.tell() if self._seekable else 0
        self._consumed = False

    @property
    def replayable(self) -> bool:
        return self._seekable

    def remaining_length(self) -> int | None:
        """Bytes left from the starting position, or None if unknown."""
        if not self._seekable:
            return None
        position = self._source.tell()
        end = self._source.seek(0, 2)
        self._source.seek(position)
        return end - self._start

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._seekable:
            self._source.seek(self._start)
        elif self._consumed:
            raise httpx.StreamConsumed()
        self._consumed = True
        while True:
            chunk = self._source.read(self.CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


def is_body_replayable(request: httpx.Request) -> bool:
    """True when the request body can be sent again unchanged."""
    stream: Any = request.stream
    if isinstance(stream, RequestContentStream):
        return stream.replayable
    # Bodies built from bytes or str are buffered by httpx
    return isinstance(stream, httpx.ByteStream)
