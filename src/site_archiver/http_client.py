from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Callable, Mapping

import requests
from requests import exceptions as req_exc
from requests.adapters import HTTPAdapter

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_STATUSES = frozenset({408, 429})

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 site-archiver/0.1"
)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def _retry_after_seconds(headers: Mapping[str, str]) -> float | None:
    retry_after = None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            retry_after = value
            break
    if not retry_after:
        return None
    try:
        return max(0.0, float(retry_after))
    except ValueError:
        return None


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    HTTP = "http"
    NETWORK = "network"
    PROTOCOL = "protocol"
    TOO_MANY_REDIRECTS = "too_many_redirects"


@dataclass(frozen=True)
class RetryPolicy:
    """How the client retries one URL.

    ``max_attempts`` counts every request, the first one included. The
    delay before retry ``n`` is ``backoff_s * n``, or the server's
    ``Retry-After`` when present, never more than ``max_backoff_s``.
    """

    max_attempts: int = 3
    backoff_s: float = 1.0
    max_backoff_s: float = 30.0
    retry_statuses: frozenset[int] = field(default=TRANSIENT_HTTP_STATUSES)

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retry_statuses or 500 <= status_code < 600

    def is_retryable_error(self, exc: Exception) -> bool:
        if isinstance(exc, (req_exc.SSLError, req_exc.TooManyRedirects)):
            return False
        return isinstance(
            exc,
            (
                req_exc.ConnectionError,
                req_exc.Timeout,
                req_exc.ChunkedEncodingError,
            ),
        )

    def delay_for(self, retry_count: int, *, retry_after: float | None = None) -> float:
        if retry_after is not None:
            return min(retry_after, self.max_backoff_s)
        return min(self.backoff_s * retry_count, self.max_backoff_s)


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    headers: dict[str, str]
    fetched_at: float
    body: bytes
    attempts: int = 1

    @property
    def content_type(self) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class FetchFailure:
    """A fetch that produced no usable response; returned, never raised."""

    url: str
    error: str
    kind: FailureKind
    attempts: int
    status_code: int | None = None


def build_session(
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    headers: Mapping[str, str] | None = None,
    pool_size: int = 10,
) -> requests.Session:
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    session.headers["User-Agent"] = user_agent
    if headers:
        session.headers.update(dict(headers))
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class HttpClient:
    def __init__(
        self,
        session: requests.Session,
        *,
        timeout_s: float = 30.0,
        retry: RetryPolicy | None = None,
        max_redirects: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._timeout = (timeout_s, timeout_s)
        self._retry = retry or RetryPolicy()
        self._sleep = sleep
        self._session.max_redirects = max_redirects

    @property
    def retry(self) -> RetryPolicy:
        return self._retry

    def fetch(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> FetchResult | FetchFailure:
        max_attempts = max(1, self._retry.max_attempts)

        for attempt in range(1, max_attempts + 1):
            try:
                resp = self._session.get(
                    url,
                    timeout=self._timeout,
                    headers=headers,
                    allow_redirects=True,
                )
            except req_exc.TooManyRedirects as e:
                return FetchFailure(
                    url=url,
                    error=f"Too many redirects: {e}",
                    kind=FailureKind.TOO_MANY_REDIRECTS,
                    attempts=attempt,
                )
            except req_exc.RequestException as e:
                if not self._retry.is_retryable_error(e):
                    return FetchFailure(
                        url=url,
                        error=str(e) or type(e).__name__,
                        kind=FailureKind.PROTOCOL,
                        attempts=attempt,
                    )
                if attempt >= max_attempts:
                    return FetchFailure(
                        url=url,
                        error=f"{type(e).__name__}: {e} (after {attempt} attempts)",
                        kind=FailureKind.NETWORK,
                        attempts=attempt,
                    )
                wait_s = self._retry.delay_for(attempt)
                logger.warning(
                    "Retrying %s in %.1fs after %s (attempt %d/%d)",
                    url,
                    wait_s,
                    type(e).__name__,
                    attempt,
                    max_attempts,
                )
                self._sleep(wait_s)
                continue

            status = int(resp.status_code)
            response_headers = {k: str(v) for k, v in resp.headers.items()}

            if self._retry.is_retryable_status(status):
                reason = getattr(resp, "reason", "") or ""
                if attempt >= max_attempts:
                    return FetchFailure(
                        url=url,
                        error=f"HTTP {status} {reason}".rstrip()
                        + f" (after {attempt} attempts)",
                        kind=FailureKind.TRANSIENT,
                        attempts=attempt,
                        status_code=status,
                    )
                wait_s = self._retry.delay_for(
                    attempt,
                    retry_after=_retry_after_seconds(response_headers),
                )
                logger.warning(
                    "Retrying %s in %.1fs after HTTP %d (attempt %d/%d)",
                    url,
                    wait_s,
                    status,
                    attempt,
                    max_attempts,
                )
                self._sleep(wait_s)
                continue

            return FetchResult(
                url=url,
                final_url=str(resp.url or url),
                status_code=status,
                headers=response_headers,
                fetched_at=time.time(),
                body=resp.content,
                attempts=attempt,
            )

        # Unreachable: the loop always returns on its last attempt.
        raise AssertionError("retry loop exited without a result")


def failure_for_status(result: FetchResult) -> FetchFailure:
    """Demote a non-2xx response to a typed failure."""

    try:
        phrase = HTTPStatus(result.status_code).phrase
    except ValueError:
        phrase = ""
    return FetchFailure(
        url=result.url,
        error=f"HTTP {result.status_code} {phrase}".rstrip(),
        kind=FailureKind.HTTP,
        attempts=result.attempts,
        status_code=result.status_code,
    )
