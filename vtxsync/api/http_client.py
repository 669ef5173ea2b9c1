"""Shared async HTTP client for the VTX Sync API collaborators.

Wraps :class:`httpx.AsyncClient` with:

* **Automatic retries** — exponential back-off with random jitter via
  :mod:`tenacity` on network errors, HTTP 5xx and HTTP 429.
  Non-idempotent requests (``idempotent=False``) are retried only when the
  server cannot have received them: connection failures and HTTP 429.
* **Rate-limit awareness** — HTTP 429 responses pause retries for the
  duration given in the ``Retry-After`` header (or JSON body).
* **Structured error mapping** — persistent client errors (4xx ≠ 429) raise
  :class:`~vtxsync.core.exceptions.ApiRequestError` immediately, carrying the
  parsed JSON body so callers can read application-level error codes.

The auth and upload clients share one instance per run to reuse the
connection pool.

Typical usage::

    from vtxsync.api.http_client import ApiHttpClient

    async with ApiHttpClient(user_agent=settings.user_agent) as http:
        response = await http.post("https://api.example.com/x", json={...})
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from vtxsync.core.exceptions import ApiRequestError

__all__ = ["ApiHttpClient", "RateLimitedError"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0
_DEFAULT_READ_TIMEOUT: Final[float] = 30.0
_DEFAULT_WRITE_TIMEOUT: Final[float] = 30.0

#: Failures that happen before the request reaches the server.
_UNSENT_ERRORS: Final[tuple[type[Exception], ...]] = (httpx.ConnectError, httpx.ConnectTimeout)

#: Default total attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Hard cap on exponential back-off base before adding jitter (seconds).
_MAX_BACKOFF_BASE: Final[float] = 30.0

#: Upper bound on jitter added on top of the exponential base (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 5.0


# ---------------------------------------------------------------------------
# Retryable error types
# ---------------------------------------------------------------------------


class RateLimitedError(ApiRequestError):
    """HTTP 429; ``retry_after`` carries the server's back-off hint."""


class _RetryableServerError(ApiRequestError):
    """Internal: signals a 5xx status for tenacity to retry.

    Surfaces to callers as a plain :class:`ApiRequestError` once retries are
    exhausted.
    """


# ---------------------------------------------------------------------------
# Retry wait strategy
# ---------------------------------------------------------------------------


def _api_wait(retry_state: RetryCallState) -> float:
    """Compute the wait before the next attempt.

    * :class:`RateLimitedError` with a positive ``retry_after`` → honour it.
    * Everything else → exponential back-off plus jitter, capped at
      :data:`_MAX_BACKOFF_BASE` seconds.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if isinstance(exc, RateLimitedError) and exc.retry_after and exc.retry_after > 0:
            logger.debug("Honouring Retry-After of %.1f s", exc.retry_after)
            return exc.retry_after

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    jitter = random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))
    return base + jitter


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class ApiHttpClient:
    """Async HTTP client with retries and structured error mapping.

    Each request method returns the :class:`httpx.Response` on HTTP 2xx and
    raises on all other outcomes.

    Args:
        user_agent: ``User-Agent`` header sent with every request.
        headers: Additional default headers merged into every request.
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving the response.
        write_timeout: Timeout for uploading the request body.
        max_attempts: Total attempts including the initial try (≥ 1).
        transport: Optional :class:`httpx.AsyncBaseTransport`, used by tests
            to plug in :class:`httpx.MockTransport`.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        headers: dict[str, str] | None = None,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        write_timeout: float = _DEFAULT_WRITE_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._user_agent = user_agent
        self._default_headers: dict[str, str] = headers or {}
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=write_timeout,
            pool=5.0,
        )
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ApiHttpClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public request methods
    # ------------------------------------------------------------------

    async def post(
        self,
        url: str,
        *,
        json: Any | None = None,
        files: dict[str, tuple[str, bytes, str]] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        idempotent: bool = True,
    ) -> httpx.Response:
        """Perform an HTTP POST with retries.

        Args:
            url: Absolute request URL.
            json: JSON-serialisable body.  Mutually exclusive with ``files``.
            files: Multipart file fields ``{field: (filename, bytes, mime)}``.
            params: Optional query-string parameters.
            headers: Per-request headers merged over the session defaults.
            idempotent: ``False`` for requests that must not be replayed once
                the server may have processed them; only unsent requests and
                HTTP 429 are then retried.

        Returns:
            The :class:`httpx.Response` on HTTP 2xx.

        Raises:
            ApiRequestError: Non-retryable HTTP status, or retryable status
                after exhausting retries.
            httpx.TransportError: Network failure after exhausting retries.
        """
        return await self._request_with_retry(
            "POST",
            url,
            json=json,
            files=files,
            params=params,
            extra_headers=headers,
            idempotent=idempotent,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call multiple times."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("ApiHttpClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Return the open HTTP client, creating it lazily if needed."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._user_agent,
                    **self._default_headers,
                },
            )
            logger.debug("ApiHttpClient HTTP session opened.")
        return self._http

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        files: dict[str, tuple[str, bytes, str]] | None = None,
        extra_headers: dict[str, str] | None = None,
        idempotent: bool = True,
    ) -> httpx.Response:
        """Execute :meth:`_single_request` under a tenacity retry policy."""
        retry_types: tuple[type[Exception], ...]
        if idempotent:
            retry_types = (_RetryableServerError, RateLimitedError, httpx.TransportError)
        else:
            retry_types = (RateLimitedError, *_UNSENT_ERRORS)

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "HTTP %s %s — attempt %d/%d failed (%s). Retrying in %.1f s…",
                method,
                url,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
                _api_wait(rs),
            )

        response: httpx.Response | None = None

        async for attempt in AsyncRetrying(
            wait=_api_wait,
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(retry_types),
            reraise=True,
            before_sleep=_before_sleep,
        ):
            with attempt:
                response = await self._single_request(
                    method=method,
                    url=url,
                    params=params,
                    json=json,
                    files=files,
                    extra_headers=extra_headers,
                )

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json: Any | None,
        files: dict[str, tuple[str, bytes, str]] | None,
        extra_headers: dict[str, str] | None,
    ) -> httpx.Response:
        """Perform exactly one HTTP request and map its status.

        Raises:
            RateLimitedError: On HTTP 429.
            _RetryableServerError: On HTTP 5xx.
            ApiRequestError: On any other non-2xx status.
            httpx.TransportError: Network-level failures (propagated for retry).
        """
        client = await self._ensure_client()

        logger.debug("HTTP %s %s", method, url)
        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                json=json,
                files=files,
                headers=extra_headers,
            )
        except httpx.TransportError:
            logger.debug("Transport error on %s %s.", method, url, exc_info=True)
            raise

        logger.debug("HTTP %s %s → %d", method, url, response.status_code)

        if response.is_success:
            return response

        payload = _json_or_none(response)

        if response.status_code == 429:
            retry_after = _parse_retry_after(response, payload)
            logger.warning("HTTP 429 from %s — retry_after=%.1f s", url, retry_after)
            raise RateLimitedError(
                "rate limited",
                status_code=429,
                payload=payload,
                retry_after=retry_after,
            )

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                f"transient server error from {url}",
                status_code=response.status_code,
                payload=payload,
            )

        raise ApiRequestError(
            _describe(response, payload),
            status_code=response.status_code,
            payload=payload,
        )


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _json_or_none(response: httpx.Response) -> Any:
    """Return the decoded JSON body, or ``None`` if the body is not JSON."""
    try:
        return response.json()
    except ValueError:
        return None


def _describe(response: httpx.Response, payload: Any) -> str:
    """Human-readable description of an error response (never empty)."""
    if isinstance(payload, dict):
        for key in ("message", "error_description", "msg", "error"):
            value = payload.get(key)
            if value:
                return str(value)
    return response.text[:200] or f"HTTP {response.status_code}"


def _parse_retry_after(response: httpx.Response, payload: Any) -> float:
    """Extract back-off duration from an HTTP 429 response (always ≥ 1.0 s)."""
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            logger.debug("Could not parse Retry-After header %r.", header)

    if isinstance(payload, dict):
        ra = payload.get("retryAfter") or payload.get("retry_after")
        if ra is not None:
            try:
                return max(float(ra), 1.0)
            except (TypeError, ValueError):
                logger.debug("Could not parse retry hint %r.", ra)

    return 1.0
