"""Retry and redirect middleware.

Both stages resend requests, so both refuse to act when the request body
cannot be replayed. Responses that are not returned to the caller are
closed before the next attempt.

Retries run on tenacity: the stop, wait and retry predicates are built per
request from the effective RetryHandlerOption.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from email.utils import parsedate_to_datetime

import httpx
import tenacity
from tenacity import RetryCallState

from api_transport.middleware import BaseMiddleware, is_body_replayable
from api_transport.models import RedirectHandlerOption, RetryHandlerOption
from api_transport.request_options import resolve_option

logger = logging.getLogger(__name__)

RETRY_ATTEMPT_HEADER = "Retry-Attempt"
RETRY_AFTER_HEADER = "Retry-After"

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait according to a Retry-After header, or None if absent/invalid.

    Accepts both delta-seconds ("120") and HTTP-date forms.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=datetime.timezone.utc)
    delta = (when - datetime.datetime.now(datetime.timezone.utc)).total_seconds()
    return max(delta, 0.0)


class _WaitRetryAfter(tenacity.wait.wait_base):
    """Waits as long as the last response's Retry-After asks, else the fallback."""

    def __init__(self, fallback: tenacity.wait.wait_base) -> None:
        self.fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            retry_after = parse_retry_after(outcome.result().headers.get(RETRY_AFTER_HEADER))
            if retry_after is not None:
                return retry_after
        return self.fallback(retry_state)


class _RetryOnStatus(tenacity.retry_base):
    """Retries a response with a retryable status while the body can be resent.

    The option's should_retry hook sees the pending delay and may veto.
    """

    def __init__(
        self,
        options: RetryHandlerOption,
        request: httpx.Request,
        wait: tenacity.wait.wait_base,
    ) -> None:
        self.options = options
        self.request = request
        self.wait = wait

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or outcome.failed:
            return False
        response = outcome.result()
        if response.status_code not in self.options.retry_status_codes:
            return False
        if not is_body_replayable(self.request):
            return False
        delay = self.wait(retry_state)
        return self.options.should_retry(delay, retry_state.attempt_number, response)


class RetryHandler(BaseMiddleware):
    """Retries throttled/unavailable responses with exponential backoff."""

    def __init__(self, options: RetryHandlerOption | None = None) -> None:
        super().__init__()
        self.options = options or RetryHandlerOption()

    async def send(self, request: httpx.Request) -> httpx.Response:
        options = resolve_option(request, self.options)
        if options.max_retries == 0:
            return await self.send_to_next(request)

        pending: list[httpx.Response] = []

        def before(retry_state: RetryCallState) -> None:
            if retry_state.attempt_number > 1:
                request.headers[RETRY_ATTEMPT_HEADER] = str(retry_state.attempt_number - 1)

        def before_sleep(retry_state: RetryCallState) -> None:
            response = retry_state.outcome.result()
            pending.append(response)
            logger.info(
                "Retrying %s %s after status %d (attempt %d of %d, waiting %.1fs)",
                request.method, request.url, response.status_code,
                retry_state.attempt_number, options.max_retries,
                retry_state.next_action.sleep,
            )

        async def sleep(seconds: float) -> None:
            # The superseded response is closed before waiting
            while pending:
                await pending.pop().aclose()
            await asyncio.sleep(seconds)

        def give_up(retry_state: RetryCallState) -> httpx.Response:
            response = retry_state.outcome.result()
            logger.warning(
                "Giving up on %s %s after %d retries (status %d)",
                request.method, request.url,
                retry_state.attempt_number - 1, response.status_code,
            )
            return response

        wait = _WaitRetryAfter(
            tenacity.wait_exponential(multiplier=options.delay_seconds, exp_base=2)
        )
        retrying = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(options.max_retries + 1),
            wait=wait,
            retry=_RetryOnStatus(options, request, wait),
            sleep=sleep,
            before=before,
            before_sleep=before_sleep,
            retry_error_callback=give_up,
        )
        return await retrying(self.send_to_next, request)

class RedirectHandler(BaseMiddleware):
    """Follows HTTP redirects up to a configured limit."""

    def __init__(self, options: RedirectHandlerOption | None = None) -> None:
        super().__init__()
        self.options = options or RedirectHandlerOption()

    async def send(self, request: httpx.Request) -> httpx.Response:
        options = resolve_option(request, self.options)
        response = await self.send_to_next(request)

        redirects = 0
        while (
            response.status_code in REDIRECT_STATUS_CODES
            and "location" in response.headers
            and redirects < options.max_redirects
            and options.should_redirect(response)
        ):
            next_request = self._build_redirect_request(request, response, options)
            if next_request is None:
                break
            redirects += 1
            logger.info(
                "Following %d redirect from %s to %s (%d of %d)",
                response.status_code, request.url, next_request.url,
                redirects, options.max_redirects,
            )
            await response.aclose()
            request = next_request
            response = await self.send_to_next(request)
        return response

    @staticmethod
    def _build_redirect_request(
        request: httpx.Request,
        response: httpx.Response,
        options: RedirectHandlerOption,
    ) -> httpx.Request | None:
        location = request.url.join(response.headers["location"])

        if location.scheme != request.url.scheme and not options.allow_redirect_on_scheme_change:
            logger.warning(
                "Refusing redirect from %s to %s: scheme change not allowed",
                request.url, location,
            )
            return None

        method = request.method
        keep_body = True
        if response.status_code == 303 and method != "HEAD":
            method, keep_body = "GET", False
        elif response.status_code in (301, 302) and method == "POST":
            method, keep_body = "GET", False

        if keep_body and not is_body_replayable(request):
            return None

        headers = request.headers.copy()
        if location.host != request.url.host or location.scheme != request.url.scheme:
            headers.pop("Authorization", None)
        headers["Host"] = location.netloc.decode("ascii")
        if not keep_body:
            for name in ("Content-Length", "Content-Type", "Transfer-Encoding"):
                headers.pop(name, None)

        return httpx.Request(
            method,
            location,
            headers=headers,
            stream=request.stream if keep_body else None,
            extensions=request.extensions,
        )
