"""
Adaptive Fetcher - polite, resumable page and image retrieval.

Per attempt:
1. Reset an inflated delay if the quiet period has passed (DelayController)
2. Block until the current delay has elapsed since the previous request
3. Send the request with browser-like headers, cookies and a chained Referer

Response handling:
- 429 / transport failure: grow delay, sleep delay + jitter, retry
- other non-2xx: terminal failure, no retry
- 2xx: absorb cookies, advance referer (pages only), decay delay

Nothing here raises for network or HTTP problems; callers inspect ``ok``.

Usage:
    from scrapers.fetcher import AdaptiveFetcher

    with AdaptiveFetcher.for_url(base_url) as fetcher:
        result = fetcher.fetch(url)
        if result.ok:
            sections = parse_sections(result.html, url)

One fetcher instance serves one sequential crawl stream. Use a separate
instance per origin when running streams in parallel.
"""
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.parse import urlsplit

import requests

from .delay_controller import DelayController
from .fetch_config import FetcherConfig, load_fetcher_config
from .session_state import SessionState

logger = logging.getLogger(__name__)


# =============================================================================
# Request fingerprint
# =============================================================================

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

PAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Cache-Control": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

IMAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Sec-Fetch-Dest": "image",
    "Sec-Fetch-Mode": "no-cors",
    "Sec-Fetch-Site": "same-origin",
}

RATE_LIMITED_STATUS = 429


# =============================================================================
# Result types
# =============================================================================

@dataclass
class FetchResult:
    """Outcome of fetching an HTML page."""
    ok: bool
    status: int = 0
    html: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class ImageResult:
    """Outcome of fetching a binary image."""
    ok: bool
    status: int = 0
    data: Optional[bytes] = None
    content_type: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


class ConcurrentUseError(RuntimeError):
    """Raised when a fetcher is entered from a second caller while a request is in flight."""
    pass


def _set_cookie_headers(response) -> List[str]:
    """Collect every Set-Cookie value, including those on redirect hops."""
    values: List[str] = []
    history = getattr(response, "history", None)
    hops = list(history) if isinstance(history, list) else []
    for hop in hops + [response]:
        raw_headers = getattr(getattr(hop, "raw", None), "headers", None)
        if raw_headers is not None and hasattr(raw_headers, "getlist"):
            values.extend(raw_headers.getlist("Set-Cookie"))
        else:
            single = hop.headers.get("Set-Cookie")
            if single:
                values.append(single)
    return values


# =============================================================================
# Fetcher
# =============================================================================

class AdaptiveFetcher:
    """
    Rate-limited HTTP fetcher with adaptive delay, cookie/referer chaining and retries.

    Owns its DelayController and SessionState; neither is shared.
    """

    def __init__(
        self,
        config: Optional[FetcherConfig] = None,
        http_session: Optional[requests.Session] = None,
        session_state: Optional[SessionState] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
    ):
        """
        Args:
            config: Delay/backoff settings (defaults to the packaged YAML defaults)
            http_session: requests.Session to send through
            session_state: Cookie/referer state (fresh one if omitted)
            clock: Monotonic time source, seconds
            sleep: Blocking sleep, seconds
            rand: Uniform [0, 1) source for retry jitter
        """
        self.config = config or load_fetcher_config()
        self.delay = DelayController(self.config, clock=clock)
        self.state = session_state or SessionState()
        self._http = http_session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self._rand = rand
        self._last_request_time: Optional[float] = None
        self._in_flight = threading.Lock()

    @classmethod
    def for_url(cls, url: str, config_path: Optional[str] = None, **kwargs) -> "AdaptiveFetcher":
        """Build a fetcher using the configured overrides for the host of ``url``."""
        domain = urlsplit(url).hostname
        return cls(config=load_fetcher_config(config_path, domain=domain), **kwargs)

    # =========================================================================
    # Public API
    # =========================================================================

    def fetch(self, url: str, retries: Optional[int] = None) -> FetchResult:
        """
        Fetch an HTML page.

        Args:
            url: Absolute URL
            retries: Attempt budget (defaults to config.retries)

        Returns:
            FetchResult; ok=False with status/error on failure.
        """
        outcome = self._request(url, retries, is_image=False)
        if isinstance(outcome, FetchResult):
            return outcome
        response, attempts = outcome
        return FetchResult(
            ok=True,
            status=response.status_code,
            html=response.text,
            attempts=attempts,
        )

    def fetch_image(self, url: str, retries: Optional[int] = None) -> ImageResult:
        """
        Fetch a binary image.

        Image fetches do not move the referer anchor: a browser loading an
        image stays on the page that embeds it.
        """
        outcome = self._request(url, retries, is_image=True)
        if isinstance(outcome, FetchResult):
            return ImageResult(
                ok=False,
                status=outcome.status,
                error=outcome.error,
                attempts=outcome.attempts,
            )
        response, attempts = outcome
        return ImageResult(
            ok=True,
            status=response.status_code,
            data=response.content,
            content_type=response.headers.get("Content-Type"),
            attempts=attempts,
        )

    @property
    def current_delay(self) -> float:
        return self.delay.current_delay

    def get_status(self) -> Dict[str, object]:
        status = self.delay.get_status()
        status["cookies"] = len(self.state.cookies)
        status["last_url"] = self.state.last_url
        return status

    def close(self) -> None:
        """Close the HTTP session."""
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # =========================================================================
    # Internals
    # =========================================================================

    def _wait_for_rate_gate(self) -> None:
        if self._last_request_time is not None:
            elapsed = self._clock() - self._last_request_time
            remaining = self.delay.current_delay - elapsed
            if remaining > 0:
                self._sleep(remaining)
        self._last_request_time = self._clock()

    def _build_headers(self, url: str, is_image: bool) -> Dict[str, str]:
        headers = dict(IMAGE_HEADERS if is_image else PAGE_HEADERS)
        if not is_image:
            headers["Sec-Fetch-Site"] = "same-origin" if self.state.has_history else "none"

        referer = self.state.referer_for(url)
        if referer:
            headers["Referer"] = referer
        cookie_header = self.state.cookie_header()
        if cookie_header:
            headers["Cookie"] = cookie_header
        return headers

    def _backoff(self, reason: str, attempt: int, retries: int) -> None:
        wait_time = self.delay.current_delay + self._rand() * self.config.max_jitter
        logger.warning(
            f"  {reason}, waiting {wait_time:.1f}s before retry (attempt {attempt}/{retries})"
        )
        self._sleep(wait_time)

    def _request(self, url: str, retries: Optional[int], is_image: bool):
        """
        Run the attempt loop.

        Returns:
            (response, attempts) on success, or a failed FetchResult.
        """
        if not self._in_flight.acquire(blocking=False):
            raise ConcurrentUseError(
                "AdaptiveFetcher is single-flight; use one instance per crawl stream"
            )
        if retries is None:
            retries = self.config.retries
        try:
            return self._attempt_loop(url, retries, is_image)
        finally:
            self._in_flight.release()

    def _attempt_loop(self, url: str, retries: int, is_image: bool):
        kind = "Image" if is_image else "Page"
        last_error = "Unknown error"

        for attempt in range(1, retries + 1):
            self.delay.maybe_reset()
            self._wait_for_rate_gate()
            headers = self._build_headers(url, is_image)

            try:
                response = self._http.get(url, headers=headers, timeout=self.config.timeout)
            except requests.exceptions.RequestException as e:
                self.delay.on_failure()
                last_error = str(e) or type(e).__name__
                if attempt < retries:
                    self._backoff(f"{kind} network error ({type(e).__name__})", attempt, retries)
                    continue
                logger.error(f"{kind} fetch failed after {retries} attempts: {url}: {last_error}")
                return FetchResult(ok=False, status=0, error=last_error, attempts=attempt)
            finally:
                # SessionState is the only cookie store; keep requests' jar empty
                self._http.cookies.clear()

            status = response.status_code

            if status == RATE_LIMITED_STATUS:
                self.delay.on_failure()
                if attempt < retries:
                    self._backoff(f"{kind} rate limited", attempt, retries)
                    continue
                logger.error(f"{kind} rate limited after {retries} attempts: {url}")
                return FetchResult(
                    ok=False,
                    status=status,
                    error="Rate limited after all retries",
                    attempts=attempt,
                )

            if not 200 <= status < 300:
                reason = getattr(response, "reason", "") or ""
                logger.warning(f"{kind} HTTP {status} for {url}")
                return FetchResult(
                    ok=False,
                    status=status,
                    error=f"HTTP {status}: {reason}".rstrip(": "),
                    attempts=attempt,
                )

            self.state.absorb(_set_cookie_headers(response))
            if not is_image:
                self.state.record_visit(url)
            self.delay.on_success()
            return response, attempt

        # Only reachable with an empty attempt budget
        return FetchResult(ok=False, status=0, error=last_error, attempts=0)
