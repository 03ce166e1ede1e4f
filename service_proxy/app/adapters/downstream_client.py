"""
Resilient HTTP client for the downstream AI service.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryAttempt, RetryConfig

StopCheck = Callable[[], Union[bool, Awaitable[bool]]]


def is_retryable_status(status_code: int) -> bool:
    """Overload (429) and server errors are worth another attempt."""
    return status_code == 429 or status_code >= 500


class ResilientDownstreamClient:
    """Wraps an httpx.AsyncClient with bounded retries.

    Retries on 429/5xx responses and on transport errors (connect, read,
    timeout). Any other outcome is returned or raised at once. When attempts
    run out, the last overloaded response is returned, or the last transport
    error re-raised.
    """

    def __init__(self, http_client: httpx.AsyncClient, retry_config: Optional[RetryConfig] = None,
                 metrics: Optional[MetricsCollector] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 rand: Optional[Callable[[], float]] = None):
        self.http_client = http_client
        self.retry_config = retry_config or RetryConfig()
        self.metrics = metrics
        self._sleep = sleep
        self._rand = rand
        self.logger = get_logger("proxy.downstream_client")

    async def call(self, method: str, url: str, *, json: Optional[Any] = None,
                   params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None,
                   max_attempts: Optional[int] = None, should_stop: Optional[StopCheck] = None) -> httpx.Response:
        """Perform the request, retrying transient failures.

        ``should_stop`` is consulted before scheduling each further attempt;
        a truthy answer ends the loop with the last outcome.
        """
        limit = max_attempts or self.retry_config.max_attempts
        retry = RetryAttempt(self.retry_config, rand=self._rand)

        if self.metrics:
            with self.metrics.time_operation("downstream_call_duration_seconds"):
                return await self._call_with_retries(method, url, json, params, headers, limit, retry, should_stop)
        return await self._call_with_retries(method, url, json, params, headers, limit, retry, should_stop)

    async def _call_with_retries(self, method: str, url: str, json: Optional[Any],
                                 params: Optional[Dict[str, Any]], headers: Optional[Dict[str, str]],
                                 limit: int, retry: RetryAttempt,
                                 should_stop: Optional[StopCheck]) -> httpx.Response:
        last_response: Optional[httpx.Response] = None
        last_error: Optional[httpx.TransportError] = None

        while True:
            retry.attempt += 1
            try:
                response = await self.http_client.request(method, url, json=json, params=params, headers=headers)
            except httpx.TransportError as e:
                last_response, last_error = None, e
                reason = "network"
            else:
                if not is_retryable_status(response.status_code):
                    return response
                last_response, last_error = response, None
                reason = "overload" if response.status_code == 429 else "server_error"

            if retry.attempt >= limit:
                break
            if should_stop is not None and await self._should_stop(should_stop):
                self.logger.info("downstream_retry_cancelled", attempt=retry.attempt)
                break

            wait = retry.next_wait()
            if last_error is not None:
                self.logger.warning(
                    "downstream_retry_error",
                    attempt=retry.attempt,
                    error=str(last_error),
                    wait_seconds=round(wait, 3),
                )
            else:
                self.logger.warning(
                    "downstream_retry_status",
                    attempt=retry.attempt,
                    status_code=last_response.status_code,
                    wait_seconds=round(wait, 3),
                )
            if self.metrics:
                self.metrics.record_downstream_retry(reason)
            await self._sleep(wait)

        if last_error is not None:
            self.logger.error("downstream_attempts_exhausted", attempts=retry.attempt, error=str(last_error))
            raise last_error
        self.logger.error("downstream_attempts_exhausted", attempts=retry.attempt,
                          status_code=last_response.status_code)
        return last_response

    @staticmethod
    async def _should_stop(check: StopCheck) -> bool:
        result = check()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)
