"""HTTP client with timeout, exponential-backoff retry and error mapping."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..cancellation import CancellationToken
from ..exceptions import (
    ApiError,
    DecodingError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    TransportError,
    UnauthorizedError,
    UnknownStatusError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0

_REDACTED_PARAMS = frozenset({"key", "api_key"})


@dataclass(frozen=True)
class ApiRequest:
    """A single outbound request; resubmitted unchanged on retry."""

    method: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    def redacted_params(self) -> dict[str, str]:
        return {
            k: ("***" if k in _REDACTED_PARAMS else v)
            for k, v in self.params.items()
        }


class ResilientClient:
    """Executes :class:`ApiRequest` objects against JSON APIs.

    HTTP 429 and transport failures are retried up to ``max_retries`` times,
    waiting ``base_delay * 2**n`` seconds before retry ``n``. Any other
    non-2xx status fails immediately.

    Example:
        >>> async with ResilientClient() as client:
        ...     data = await client.execute(ApiRequest("GET", url))
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._timeout = timeout
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), transport=transport
        )

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def execute(
        self,
        request: ApiRequest,
        decode: Callable[[Any], T] | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> T:
        """Send ``request`` and decode the JSON body with ``decode``.

        Args:
            request: The request to send.
            decode: Converts the parsed JSON body into the expected type.
                When omitted the parsed JSON is returned as-is.
            cancel_token: Once cancelled, no further retry is attempted.

        Raises:
            ApiError: One of its subclasses, see :mod:`menureader.exceptions`.
        """

        def should_retry(exc: BaseException) -> bool:
            if cancel_token is not None and cancel_token.cancelled:
                return False
            return isinstance(exc, ApiError) and exc.retryable

        async def backoff(seconds: float) -> None:
            if cancel_token is None:
                await self._sleep(seconds)
            elif self._sleep is asyncio.sleep:
                await cancel_token.sleep(seconds)
            else:
                await self._sleep(seconds)
                # a cancel that lands during the backoff aborts the next attempt
                cancel_token.raise_if_cancelled()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._base_delay, exp_base=2, min=0),
            retry=retry_if_exception(should_retry),
            sleep=backoff,
            before_sleep=self._log_retry,
            reraise=True,
        )

        result: Any = None
        async for attempt in retrying:
            with attempt:
                result = await self._send_once(request, decode)
        return result

    async def _send_once(
        self, request: ApiRequest, decode: Callable[[Any], T] | None
    ) -> Any:
        logger.debug(
            "API request",
            extra={
                "method": request.method,
                "url": request.url,
                "params": request.redacted_params(),
            },
        )
        try:
            response = await self._http.request(
                request.method,
                request.url,
                params=request.params or None,
                json=request.json,
                headers=request.headers or None,
            )
        except httpx.TimeoutException as e:
            logger.warning("API timeout", extra={"url": request.url})
            raise TransportError(timeout=True) from e
        except httpx.TransportError as e:
            logger.warning(
                "API transport error", extra={"url": request.url, "error": str(e)}
            )
            raise TransportError(f"ネットワークエラー: {e}") from e

        status = response.status_code
        logger.debug(
            "API response",
            extra={"url": request.url, "status": status, "bytes": len(response.content)},
        )

        if 200 <= status < 300:
            return self._decode(response, decode)
        raise _error_for_status(status)

    @staticmethod
    def _decode(response: httpx.Response, decode: Callable[[Any], T] | None) -> Any:
        try:
            payload = response.json()
        except ValueError as e:
            raise DecodingError(f"JSONとして解析できません: {e}") from e
        if decode is None:
            return payload
        try:
            return decode(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DecodingError(f"応答データの形式が不正です: {e}") from e

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            "Retrying API request (attempt %d) in %.2fs: %s",
            retry_state.attempt_number,
            delay,
            exc,
        )


def _error_for_status(status: int) -> ApiError:
    match status:
        case 429:
            return RateLimitedError()
        case 401:
            return UnauthorizedError()
        case 403:
            return ForbiddenError()
        case 404:
            return NotFoundError()
        case _ if 500 <= status < 600:
            return ServerError(status)
        case _:
            return UnknownStatusError(status)
