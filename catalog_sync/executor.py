"""
Resilient request executor for supplier and marketplace calls.

Every outbound HTTP call goes through ``RequestExecutor.request`` which:
- Classifies failures into fatal, rate-limited, transient and other
- Retries rate-limited and transient failures with exponential backoff
  and jitter, honoring ``Retry-After`` on 429 responses
- Notifies an optional observer before each wait
- Raises the last classified error once attempts are exhausted
"""

import asyncio
import inspect
import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional

import httpx

from core.exceptions import (
    AuthenticationError,
    FatalRequestError,
    MarketplaceValidationError,
    NetworkError,
    RateLimitError,
    RemoteServiceError,
    RequestRejectedError,
    ResourceNotFoundError,
    RetryableError,
)

logger = logging.getLogger(__name__)

# Transport failures worth another attempt: timeouts, resets, aborted streams
TRANSIENT_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass
class RetryPolicy:
    """
    Retry settings for one executor.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay_ms: Delay before the second attempt (before jitter)
        max_delay_ms: Cap on computed backoff delays
        timeout_ms: Per-request timeout
        max_retry_after_ms: Cap on server-requested (Retry-After) waits
    """
    max_attempts: int = 5
    base_delay_ms: int = 500
    max_delay_ms: int = 15000
    timeout_ms: int = 30000
    max_retry_after_ms: int = 120000

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def worst_case_seconds(self) -> float:
        """Upper bound for one ``request`` call when every attempt times out."""
        longest_wait_ms = max(self.max_delay_ms, self.max_retry_after_ms)
        total_ms = self.max_attempts * self.timeout_ms + (self.max_attempts - 1) * longest_wait_ms
        return total_ms / 1000


@dataclass
class RetryContext:
    """What the observer sees before each retry wait."""
    attempt: int
    max_attempts: int
    delay_seconds: float
    classification: str
    error: Exception
    method: str
    url: str


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header into seconds.

    Accepts delta-seconds ("2") or an HTTP date. Returns None when the
    header is missing, unparseable or not a finite number; dates in the
    past give 0.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None

    if seconds is not None:
        if not math.isfinite(seconds):
            return None
        return max(0.0, seconds)

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


def compute_backoff(attempt: int, policy: RetryPolicy) -> float:
    """Exponential backoff with +/-20% jitter, in seconds, capped."""
    delay_ms = policy.base_delay_ms * (2 ** (attempt - 1)) * random.uniform(0.8, 1.2)
    return min(delay_ms, policy.max_delay_ms) / 1000


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:2000]


class RequestExecutor:
    """
    Retrying wrapper around an ``httpx.AsyncClient``.

    The policy can be swapped between chunks (``executor.policy = ...``);
    requests pick up the policy that is current when they start.

    Args:
        client: Shared HTTP client
        policy: Retry settings
        on_retry: Optional observer called with a RetryContext before each
            wait. May be sync or async. Its failures are logged and ignored.
        service_name: Label used in logs and error context
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[Callable[[RetryContext], Any]] = None,
        service_name: str = "remote"
    ):
        self.client = client
        self.policy = policy or RetryPolicy()
        self.on_retry = on_retry
        self.service_name = service_name

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        """
        Perform one logical request with retries.

        Returns:
            The successful (2xx/3xx) response

        Raises:
            AuthenticationError: HTTP 401/403, never retried
            FatalRequestError: HTTP 405, never retried
            ResourceNotFoundError: HTTP 404
            MarketplaceValidationError: HTTP 400, with the decoded body
            RequestRejectedError: Other HTTP 4xx
            RateLimitError / NetworkError: When retries are exhausted
        """
        policy = self.policy
        attempt = 0

        while True:
            attempt += 1
            try:
                logger.debug(f"{self.service_name}: {method} {url} attempt {attempt}/{policy.max_attempts}")
                return await self._send(method, url, policy, params=params, json=json, headers=headers)

            except RetryableError as e:
                if attempt >= policy.max_attempts:
                    logger.error(
                        f"{self.service_name}: {method} {url} failed after {attempt} attempts - {e.message}"
                    )
                    raise

                classification = "rate_limited" if isinstance(e, RateLimitError) else "transient"
                delay = compute_backoff(attempt, policy)
                if isinstance(e, RateLimitError) and e.retry_after is not None:
                    delay = min(e.retry_after, policy.max_retry_after_ms / 1000)

                await self._notify(RetryContext(
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay_seconds=delay,
                    classification=classification,
                    error=e,
                    method=method,
                    url=url,
                ))
                logger.warning(
                    f"{self.service_name}: retry #{attempt}/{policy.max_attempts} in {delay:.2f}s "
                    f"({classification}) - {e.message}"
                )
                await asyncio.sleep(delay)

    async def request_json(self, method: str, url: str, **kwargs) -> Any:
        """Like ``request`` but returns the decoded JSON body (or None)."""
        response = await self.request(method, url, **kwargs)
        if not response.content:
            return None
        return response.json()

    async def _send(
        self,
        method: str,
        url: str,
        policy: RetryPolicy,
        **kwargs
    ) -> httpx.Response:
        context = {"service": self.service_name, "method": method, "url": url}

        try:
            response = await self.client.request(method, url, timeout=policy.timeout_seconds, **kwargs)
        except TRANSIENT_TRANSPORT_ERRORS as e:
            raise NetworkError(
                f"Transport error calling {url}: {type(e).__name__}",
                context=context,
                original_exception=e
            )
        except httpx.HTTPError as e:
            raise RemoteServiceError(
                f"Request to {url} could not be sent",
                context=context,
                original_exception=e
            )

        status = response.status_code
        if status < 400:
            return response

        # ----------------------------------------------------------------
        # Classify the failed response
        # ----------------------------------------------------------------
        payload = _decode_body(response)

        if status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed for {url}",
                context=context, status_code=status, payload=payload
            )

        if status == 405:
            raise FatalRequestError(
                f"Method {method} not allowed for {url}",
                context=context, status_code=status, payload=payload
            )

        if status == 429:
            raise RateLimitError(
                f"Rate limit exceeded for {url}",
                context=context,
                payload=payload,
                retry_after=parse_retry_after(response.headers.get("Retry-After"))
            )

        if status >= 500:
            raise NetworkError(
                f"Server error {status} from {url}",
                context=context, status_code=status, payload=payload
            )

        if status == 404:
            raise ResourceNotFoundError(
                f"Resource not found: {url}",
                context=context, status_code=status, payload=payload
            )

        if status == 400:
            raise MarketplaceValidationError(
                f"Request rejected by {self.service_name}: {url}",
                context=context, status_code=status, payload=payload
            )

        raise RequestRejectedError(
            f"Client error {status} from {url}",
            context=context, status_code=status, payload=payload
        )

    async def _notify(self, retry_context: RetryContext):
        if self.on_retry is None:
            return
        try:
            result = self.on_retry(retry_context)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"{self.service_name}: retry observer failed - {e}")
