"""
Tests for the adaptive fetcher.

HTTP is mocked at requests.Session.get; the FakeClock fixture stands in for
both the monotonic clock and sleep, so backoff waits are recorded instead of
slept.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from scrapers.fetch_config import FetcherConfig
from scrapers.fetcher import AdaptiveFetcher, ConcurrentUseError, FetchResult, ImageResult

BASE = "https://mitsubishi.epc-data.com/delica_space_gear/pd6w/hseue9/"
PAGE_URL = BASE + "engine/engine-assy/"

REASONS = {200: "OK", 404: "Not Found", 429: "Too Many Requests", 500: "Internal Server Error"}


def make_response(status=200, text="<html></html>", content=b"", headers=None, set_cookies=()):
    response = Mock()
    response.status_code = status
    response.reason = REASONS.get(status, "")
    response.text = text
    response.content = content
    response.headers = headers or {}
    response.history = []
    response.raw.headers.getlist.return_value = list(set_cookies)
    return response


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def config():
    return FetcherConfig(
        initial_delay=1.0,
        min_delay=0.5,
        max_delay=30.0,
        backoff_multiplier=2.0,
        max_jitter=2.0,
        retries=5,
    )


@pytest.fixture
def fetcher(config, clock):
    fetcher = AdaptiveFetcher(config=config, clock=clock, sleep=clock.sleep, rand=lambda: 0.5)
    yield fetcher
    fetcher.close()


@pytest.fixture
def mock_get():
    with patch("requests.Session.get") as mock:
        yield mock


def sent_headers(mock_get, call_index):
    return mock_get.call_args_list[call_index].kwargs["headers"]


# =============================================================================
# Retry behaviour
# =============================================================================

class TestRateLimitRetry:

    def test_429_three_times_then_success(self, fetcher, mock_get, clock):
        mock_get.side_effect = [make_response(429)] * 3 + [make_response(200, text="<p>ok</p>")]

        result = fetcher.fetch(PAGE_URL, retries=5)

        assert isinstance(result, FetchResult)
        assert result.ok is True
        assert result.html == "<p>ok</p>"
        assert result.attempts == 4
        assert fetcher.delay.failure_count == 3
        assert fetcher.delay.success_count == 1
        # delay doubles per 429; each wait is delay + 0.5 * max_jitter
        assert clock.sleeps == [3.0, 5.0, 9.0]

    def test_exhausted_retries_return_structured_failure(self, fetcher, mock_get, clock):
        mock_get.return_value = make_response(429)

        result = fetcher.fetch(PAGE_URL, retries=3)

        assert result.ok is False
        assert result.status == 429
        assert result.error == "Rate limited after all retries"
        assert result.attempts == 3
        assert mock_get.call_count == 3
        # No backoff after the final attempt
        assert len(clock.sleeps) == 2

    def test_delay_never_exceeds_max(self, config, clock, mock_get):
        config.max_delay = 5.0
        fetcher = AdaptiveFetcher(config=config, clock=clock, sleep=clock.sleep, rand=lambda: 0.0)
        mock_get.return_value = make_response(429)

        fetcher.fetch(PAGE_URL, retries=10)

        assert fetcher.current_delay == 5.0
        assert max(clock.sleeps) == 5.0

    def test_jitter_added_to_backoff(self, config, clock, mock_get):
        fetcher = AdaptiveFetcher(config=config, clock=clock, sleep=clock.sleep, rand=lambda: 0.25)
        mock_get.side_effect = [make_response(429), make_response(200)]

        fetcher.fetch(PAGE_URL)

        assert clock.sleeps == [2.0 + 0.25 * 2.0]

    def test_default_retries_from_config(self, config, clock, mock_get):
        config.retries = 2
        fetcher = AdaptiveFetcher(config=config, clock=clock, sleep=clock.sleep, rand=lambda: 0.0)
        mock_get.return_value = make_response(429)

        result = fetcher.fetch(PAGE_URL)

        assert result.attempts == 2
        assert mock_get.call_count == 2

    def test_zero_retries_sends_nothing(self, fetcher, mock_get, clock):
        mock_get.return_value = make_response(429)

        result = fetcher.fetch(PAGE_URL, retries=0)

        assert result.ok is False
        assert result.status == 0
        assert result.error == "Unknown error"
        assert result.attempts == 0
        assert mock_get.call_count == 0
        assert clock.sleeps == []


class TestNonTransientErrors:

    def test_404_is_not_retried(self, fetcher, mock_get, clock):
        mock_get.return_value = make_response(404)

        result = fetcher.fetch(PAGE_URL)

        assert result.ok is False
        assert result.status == 404
        assert result.error == "HTTP 404: Not Found"
        assert mock_get.call_count == 1
        assert fetcher.delay.failure_count == 0
        assert clock.sleeps == []

    def test_500_is_not_retried(self, fetcher, mock_get):
        mock_get.return_value = make_response(500)

        result = fetcher.fetch(PAGE_URL)

        assert result.ok is False
        assert result.status == 500
        assert mock_get.call_count == 1

    def test_failed_page_does_not_move_referer(self, fetcher, mock_get):
        mock_get.return_value = make_response(404)
        fetcher.fetch(PAGE_URL)
        assert fetcher.state.last_url is None


class TestTransportErrors:

    def test_connection_error_retried(self, fetcher, mock_get, clock):
        mock_get.side_effect = [
            requests.exceptions.ConnectionError("connection reset"),
            make_response(200),
        ]

        result = fetcher.fetch(PAGE_URL)

        assert result.ok is True
        assert result.attempts == 2
        assert fetcher.delay.failure_count == 1
        assert clock.sleeps == [3.0]

    def test_timeouts_exhaust_without_status(self, fetcher, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout("read timed out")

        result = fetcher.fetch(PAGE_URL, retries=3)

        assert result.ok is False
        assert result.status == 0
        assert "timed out" in result.error
        assert result.attempts == 3
        assert fetcher.delay.failure_count == 3

    def test_timeout_passed_to_requests(self, fetcher, mock_get):
        mock_get.return_value = make_response(200)
        fetcher.fetch(PAGE_URL)
        assert mock_get.call_args.kwargs["timeout"] == 30.0


# =============================================================================
# Rate gate and delay adaptation
# =============================================================================

class TestRateGate:

    def test_first_request_not_delayed(self, fetcher, mock_get, clock):
        mock_get.return_value = make_response(200)
        fetcher.fetch(PAGE_URL)
        assert clock.sleeps == []

    def test_back_to_back_requests_wait_current_delay(self, fetcher, mock_get, clock):
        mock_get.return_value = make_response(200)

        fetcher.fetch(PAGE_URL)
        fetcher.fetch(BASE + "engine/oil-pump/")

        assert clock.sleeps == [pytest.approx(0.85)]

    def test_no_wait_when_delay_already_elapsed(self, fetcher, mock_get, clock):
        mock_get.return_value = make_response(200)

        fetcher.fetch(PAGE_URL)
        clock.advance(5)
        fetcher.fetch(BASE + "engine/oil-pump/")

        assert clock.sleeps == []

    def test_quiet_period_resets_inflated_delay(self, fetcher, mock_get, clock):
        mock_get.side_effect = [make_response(429), make_response(200), make_response(200)]
        fetcher.fetch(PAGE_URL)
        assert fetcher.current_delay == pytest.approx(2.0 * 0.85)

        clock.advance(61)
        fetcher.fetch(BASE + "engine/oil-pump/")

        # Reset to 1.0 before the request, then decayed by the success
        assert fetcher.current_delay == pytest.approx(0.85)


# =============================================================================
# Session state chaining
# =============================================================================

class TestSessionChaining:

    def test_first_request_uses_origin_referer(self, fetcher, mock_get):
        mock_get.return_value = make_response(200)

        fetcher.fetch(PAGE_URL)

        headers = sent_headers(mock_get, 0)
        assert headers["Referer"] == "https://mitsubishi.epc-data.com/"
        assert headers["Sec-Fetch-Site"] == "none"
        assert "Cookie" not in headers
        assert "Mozilla/5.0" in headers["User-Agent"]

    def test_second_request_chains_referer_and_cookies(self, fetcher, mock_get):
        mock_get.side_effect = [
            make_response(200, set_cookies=["PHPSESSID=abc123; path=/"]),
            make_response(200),
        ]

        fetcher.fetch(PAGE_URL)
        fetcher.fetch(BASE + "engine/oil-pump/")

        headers = sent_headers(mock_get, 1)
        assert headers["Referer"] == PAGE_URL
        assert headers["Cookie"] == "PHPSESSID=abc123"
        assert headers["Sec-Fetch-Site"] == "same-origin"

    def test_cookies_from_redirect_hops_absorbed(self, fetcher, mock_get):
        hop = Mock()
        hop.raw.headers.getlist.return_value = ["hop=1"]
        response = make_response(200, set_cookies=["final=2"])
        response.history = [hop]
        mock_get.return_value = response

        fetcher.fetch(PAGE_URL)

        assert fetcher.state.cookie_header() == "hop=1; final=2"

    def test_image_fetch_keeps_page_referer(self, fetcher, mock_get):
        image_url = "https://mitsubishi.epc-data.com/images/engine-assy-148.png"
        mock_get.side_effect = [
            make_response(200),
            make_response(200, content=b"\x89PNG", headers={"Content-Type": "image/png"}),
            make_response(200),
        ]

        fetcher.fetch(PAGE_URL)
        image = fetcher.fetch_image(image_url)
        fetcher.fetch(BASE + "engine/oil-pump/")

        assert isinstance(image, ImageResult)
        assert image.ok is True
        assert image.data == b"\x89PNG"
        assert image.content_type == "image/png"
        assert sent_headers(mock_get, 1)["Referer"] == PAGE_URL
        assert sent_headers(mock_get, 1)["Sec-Fetch-Dest"] == "image"
        assert sent_headers(mock_get, 2)["Referer"] == PAGE_URL

    def test_image_failure_is_structured(self, fetcher, mock_get):
        mock_get.return_value = make_response(404)

        image = fetcher.fetch_image("https://mitsubishi.epc-data.com/images/missing.png")

        assert image.ok is False
        assert image.status == 404
        assert image.data is None


class TestSingleFlight:

    def test_concurrent_use_rejected(self, fetcher, mock_get):
        mock_get.return_value = make_response(200)
        fetcher._in_flight.acquire()
        try:
            with pytest.raises(ConcurrentUseError):
                fetcher.fetch(PAGE_URL)
        finally:
            fetcher._in_flight.release()

        assert fetcher.fetch(PAGE_URL).ok is True

    def test_get_status(self, fetcher, mock_get):
        mock_get.return_value = make_response(200, set_cookies=["a=1"])
        fetcher.fetch(PAGE_URL)

        status = fetcher.get_status()

        assert status["successes"] == 1
        assert status["cookies"] == 1
        assert status["last_url"] == PAGE_URL


@pytest.mark.live
def test_live_listing_page_parses():
    from config import get_catalog_base_url
    from scrapers.parser import parse_sections

    url = get_catalog_base_url() + "engine/engine-assy/"
    with AdaptiveFetcher.for_url(url) as fetcher:
        result = fetcher.fetch(url, retries=2)

    assert result.ok, result.error
    assert parse_sections(result.html, url)
