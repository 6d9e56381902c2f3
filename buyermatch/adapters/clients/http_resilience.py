# buyermatch/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from ...config import settings

log = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class CircuitOpen(httpx.HTTPError):
    pass


class CircuitBreaker:
    def __init__(self, fail_threshold: int, reset_s: float) -> None:
        self.fail_threshold = int(fail_threshold)
        self.reset_s = float(reset_s)
        self.fails = 0
        self.opened_at: float | None = None

    def is_open(self, now: float | None = None) -> bool:
        if self.opened_at is None:
            return False
        now = time.monotonic() if now is None else now
        if (now - self.opened_at) >= self.reset_s:
            # half-open: let the next call through, one more failure re-opens
            self.opened_at = None
            self.fails = max(0, self.fail_threshold - 1)
            return False
        return True

    def on_success(self) -> None:
        self.fails = 0
        self.opened_at = None

    def on_failure(self) -> None:
        self.fails += 1
        if self.fails >= self.fail_threshold and self.opened_at is None:
            self.opened_at = time.monotonic()
            log.warning("circuit opened after %d consecutive failures", self.fails)


class MinGapRateLimiter:
    """Process-wide pacing: at most `rps` calls per second, in order of arrival."""

    def __init__(self, rps: float) -> None:
        self.rps = float(rps)
        self._lock = asyncio.Lock()
        self._last = 0.0

    async def wait(self) -> None:
        if self.rps <= 0:
            return
        gap = 1.0 / self.rps
        async with self._lock:
            delay = (self._last + gap) - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
            self._last = time.monotonic()


_BREAKER = CircuitBreaker(settings.HTTP_CIRCUIT_FAIL_THRESHOLD, settings.HTTP_CIRCUIT_RESET_S)
_LIMITER = MinGapRateLimiter(settings.HTTP_RATE_LIMIT_RPS)


def reset_resilience_state() -> None:
    _BREAKER.on_success()


async def resilient_request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: Any | None = None,
    content: bytes | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    """
    Rate limited, retried on 429/5xx/timeouts with exponential backoff, and
    short-circuited while the breaker is open. Raises the last httpx error.
    """
    if _BREAKER.is_open():
        raise CircuitOpen(f"circuit_open: refusing external call to {url}")

    timeout = httpx.Timeout(float(settings.HTTP_TIMEOUT_S))
    max_retries = int(settings.HTTP_MAX_RETRIES)
    backoff = float(settings.HTTP_BACKOFF_BASE_S)

    last_exc: Exception | None = None
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        for attempt in range(max_retries + 1):
            await _LIMITER.wait()
            try:
                resp = await client.request(
                    method, url, headers=headers, params=params, json=json, content=content
                )
                if resp.status_code in RETRYABLE_STATUS:
                    raise httpx.HTTPStatusError(
                        f"retryable status {resp.status_code}", request=resp.request, response=resp
                    )
                resp.raise_for_status()
                _BREAKER.on_success()
                return resp
            except httpx.HTTPStatusError as e:
                last_exc = e
                _BREAKER.on_failure()
                if e.response.status_code not in RETRYABLE_STATUS:
                    break
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_exc = e
                _BREAKER.on_failure()

            if attempt >= max_retries:
                break
            sleep_s = min(5.0, backoff * (2**attempt))
            log.info("retrying %s %s in %.2fs (attempt %d)", method, url, sleep_s, attempt + 1)
            await asyncio.sleep(sleep_s)

    assert last_exc is not None
    raise last_exc
