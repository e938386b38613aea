"""
Resilient HTTP Client for External API Calls

Used for every outbound call: order platform, rate providers, shipment signal.
- Exponential backoff with jitter to prevent thundering herd
- 429 detection with Retry-After header respect
- Circuit breaker pattern per host for repeated failures
- Proper async implementation (no blocking calls)

Rate provider clients run with few or no retries: the aggregator already
bounds each provider call with a timeout and substitutes fallback quotes.
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

# Longest server-requested wait we honor before failing the request
MAX_RETRY_AFTER_WAIT = 30.0


class CircuitOpenError(Exception):
    """Raised when a host's circuit is open and the request is rejected."""
    def __init__(self, host: str, remaining: float):
        self.host = host
        self.remaining = remaining
        super().__init__(f"Circuit breaker OPEN for {host} ({remaining:.1f}s until retry)")


class CircuitState(Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 0.5           # Base delay in seconds
    max_delay: float = 10.0           # Maximum delay cap
    exponential_base: float = 2.0     # Exponential backoff multiplier
    jitter_factor: float = 0.5        # Random jitter (0-1)

    # Status codes that should trigger retry
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)

    # Don't retry these - they're permanent failures
    fatal_status_codes: tuple = (400, 401, 403, 404)


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5        # Failures before opening circuit
    success_threshold: int = 2        # Successes to close circuit
    timeout_seconds: float = 60.0     # Time before half-open test


@dataclass
class HostState:
    """Tracks circuit breaker state for a specific host."""
    circuit_state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0


def calculate_backoff(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
    jitter_factor: float = 0.5,
) -> float:
    """
    Calculate delay with exponential backoff and jitter.

    Formula: min(base * (exp_base ^ attempt) + jitter, max_delay)
    """
    delay = base_delay * (exponential_base ** attempt)
    jitter = delay * jitter_factor * (2 * random.random() - 1)
    delay += jitter
    return max(0.0, min(delay, max_delay))


class ResilientHTTPClient:
    """
    Async HTTP client with built-in resilience patterns.

    Usage:
        async with ResilientHTTPClient() as client:
            response = await client.get("https://api.example.com/data")
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        timeout: float = 30.0,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.circuit_config = circuit_config or CircuitBreakerConfig()
        self.timeout = timeout
        self.default_headers = default_headers or {}

        self._client: Optional[httpx.AsyncClient] = None
        self._host_states: Dict[str, HostState] = {}

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.default_headers,
                follow_redirects=True,
            )
        return self

    async def close(self):
        """Close the client. Use this when not using context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_host(self, url: str) -> str:
        """Extract host from URL for per-host tracking."""
        return urlparse(url).netloc

    def _get_host_state(self, host: str) -> HostState:
        """Get or create state for a host."""
        if host not in self._host_states:
            self._host_states[host] = HostState()
        return self._host_states[host]

    def _calculate_backoff(self, attempt: int) -> float:
        cfg = self.retry_config
        return calculate_backoff(
            attempt,
            base_delay=cfg.base_delay,
            max_delay=cfg.max_delay,
            exponential_base=cfg.exponential_base,
            jitter_factor=cfg.jitter_factor,
        )

    def _check_circuit_breaker(self, host: str) -> None:
        """
        Check if circuit breaker allows request.

        Raises CircuitOpenError if the circuit is open.
        """
        state = self._get_host_state(host)
        cfg = self.circuit_config
        now = time.time()

        if state.circuit_state == CircuitState.OPEN:
            if now - state.last_failure_time > cfg.timeout_seconds:
                logger.info(f"[CIRCUIT] {host}: Moving to HALF_OPEN for test request")
                state.circuit_state = CircuitState.HALF_OPEN
                state.success_count = 0
                return
            remaining = cfg.timeout_seconds - (now - state.last_failure_time)
            logger.warning(f"[CIRCUIT] {host}: OPEN, rejecting request ({remaining:.1f}s until retry)")
            raise CircuitOpenError(host, remaining)

    def _record_success(self, host: str) -> None:
        """Record successful request for circuit breaker."""
        state = self._get_host_state(host)
        state.failure_count = 0

        if state.circuit_state == CircuitState.HALF_OPEN:
            state.success_count += 1
            if state.success_count >= self.circuit_config.success_threshold:
                logger.info(f"[CIRCUIT] {host}: Closing circuit after {state.success_count} successes")
                state.circuit_state = CircuitState.CLOSED

    def _record_failure(self, host: str) -> None:
        """Record failed request for circuit breaker."""
        state = self._get_host_state(host)
        state.failure_count += 1
        state.last_failure_time = time.time()
        state.success_count = 0

        if state.circuit_state == CircuitState.HALF_OPEN:
            logger.warning(f"[CIRCUIT] {host}: Test request failed, reopening circuit")
            state.circuit_state = CircuitState.OPEN
        elif state.failure_count >= self.circuit_config.failure_threshold:
            logger.error(f"[CIRCUIT] {host}: Opening circuit after {state.failure_count} failures")
            state.circuit_state = CircuitState.OPEN

    def _parse_retry_after(self, response: httpx.Response) -> Optional[float]:
        """Parse Retry-After header, returns seconds to wait."""
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return None

        try:
            return max(0.0, float(int(retry_after)))
        except ValueError:
            pass

        try:
            dt = parsedate_to_datetime(retry_after)
            return max(0.0, dt.timestamp() - time.time())
        except (ValueError, TypeError):
            pass

        return None

    async def request(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """
        Make an HTTP request with full resilience.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Target URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            httpx.Response on success

        Raises:
            httpx.HTTPStatusError: On non-retryable error or retries exhausted
            httpx.TransportError: On network errors after retries
            CircuitOpenError: On circuit breaker rejection
        """
        if not self._client:
            await self.init()

        host = self._get_host(url)
        cfg = self.retry_config

        self._check_circuit_breaker(host)

        last_exception: Optional[Exception] = None

        for attempt in range(cfg.max_retries + 1):
            try:
                logger.debug(f"[HTTP] {method} {url} (attempt {attempt + 1}/{cfg.max_retries + 1})")
                response = await self._client.request(method, url, **kwargs)

                if response.status_code in cfg.retryable_status_codes:
                    self._record_failure(host)

                    if attempt < cfg.max_retries:
                        delay = self._calculate_backoff(attempt)
                        if response.status_code == 429:
                            retry_after = self._parse_retry_after(response)
                            if retry_after is not None:
                                if retry_after > MAX_RETRY_AFTER_WAIT:
                                    logger.error(
                                        f"[429] {host}: Retry-After {retry_after:.0f}s exceeds max "
                                        f"({MAX_RETRY_AFTER_WAIT}s) - failing fast"
                                    )
                                    response.raise_for_status()
                                delay = retry_after
                        logger.warning(
                            f"[HTTP] {host}: Status {response.status_code}, "
                            f"retrying in {delay:.1f}s (attempt {attempt + 1})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    response.raise_for_status()

                if response.status_code in cfg.fatal_status_codes or response.is_error:
                    logger.error(f"[HTTP] {host}: Fatal status {response.status_code}, not retrying")
                    response.raise_for_status()

                self._record_success(host)
                return response

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                self._record_failure(host)
                last_exception = e

                if attempt < cfg.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(f"[HTTP] {host}: {type(e).__name__}, retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                    continue

        logger.error(f"[HTTP] {host}: All {cfg.max_retries + 1} attempts failed")
        raise last_exception

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """GET request with resilience."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        """POST request with resilience."""
        return await self.request("POST", url, **kwargs)


# Pre-configured clients for specific collaborators

def get_order_platform_client() -> ResilientHTTPClient:
    """
    Get client configured for the order platform.

    Retries are handled by the orchestrator's fetch loop, so this client
    only retries quick transport blips once.
    """
    return ResilientHTTPClient(
        retry_config=RetryConfig(
            max_retries=1,
            base_delay=0.5,
            max_delay=5.0,
        ),
        circuit_config=CircuitBreakerConfig(
            failure_threshold=10,
            success_threshold=2,
            timeout_seconds=30.0,
        ),
        timeout=15.0,
    )


def get_rate_api_client(timeout: float = 5.0) -> ResilientHTTPClient:
    """
    Get client configured for carrier rate APIs.

    No retries: the aggregator's per-provider timeout bounds each call.
    """
    return ResilientHTTPClient(
        retry_config=RetryConfig(max_retries=0),
        circuit_config=CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=1,
            timeout_seconds=60.0,
        ),
        timeout=timeout,
    )


def get_signal_client(timeout: float = 5.0) -> ResilientHTTPClient:
    """Get client for the fire-and-forget shipment signal."""
    return ResilientHTTPClient(
        retry_config=RetryConfig(max_retries=2, base_delay=0.5, max_delay=5.0),
        timeout=timeout,
    )
