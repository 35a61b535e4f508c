"""
Tests for the adaptive delay controller.

Time is driven by the FakeClock fixture; no test sleeps.
"""

import pytest

from scrapers.delay_controller import DelayController
from scrapers.fetch_config import FetcherConfig


@pytest.fixture
def config():
    return FetcherConfig(
        initial_delay=1.0,
        min_delay=0.5,
        max_delay=8.0,
        backoff_multiplier=2.0,
        success_decay=0.85,
        quiet_period=60.0,
    )


@pytest.fixture
def controller(config, clock):
    return DelayController(config, clock=clock)


class TestBounds:

    def test_starts_at_initial_delay(self, controller):
        assert controller.current_delay == 1.0
        assert controller.last_error_time is None

    def test_success_decays_by_factor(self, controller):
        controller.on_success()
        assert controller.current_delay == pytest.approx(0.85)

    def test_successes_never_go_below_min(self, controller):
        for _ in range(100):
            controller.on_success()
        assert controller.current_delay == 0.5

    def test_failure_grows_by_multiplier(self, controller, clock):
        controller.on_failure()
        assert controller.current_delay == 2.0
        assert controller.last_error_time == clock.now

    def test_failures_never_exceed_max(self, controller):
        for _ in range(50):
            controller.on_failure()
        assert controller.current_delay == 8.0
        assert controller.failure_count == 50


class TestQuietPeriodReset:

    def test_reset_after_quiet_period(self, controller, clock):
        controller.on_failure()
        controller.on_failure()
        assert controller.current_delay == 4.0

        clock.advance(61)
        assert controller.maybe_reset() is True
        assert controller.current_delay == 1.0
        assert controller.last_error_time is None

    def test_no_reset_within_quiet_period(self, controller, clock):
        controller.on_failure()
        clock.advance(59)
        assert controller.maybe_reset() is False
        assert controller.current_delay == 2.0
        assert controller.last_error_time is not None

    def test_no_reset_without_failure(self, controller, clock):
        controller.on_success()
        clock.advance(600)
        assert controller.maybe_reset() is False
        assert controller.current_delay == pytest.approx(0.85)

    def test_decayed_delay_not_raised_by_reset(self, controller, clock):
        controller.on_failure()
        for _ in range(20):
            controller.on_success()
        clock.advance(61)

        assert controller.maybe_reset() is False
        assert controller.current_delay == 0.5
        assert controller.last_error_time is None

    def test_new_failure_restarts_quiet_period(self, controller, clock):
        controller.on_failure()
        clock.advance(50)
        controller.on_failure()
        clock.advance(50)
        assert controller.maybe_reset() is False
        clock.advance(11)
        assert controller.maybe_reset() is True


def test_get_status(controller):
    controller.on_failure()
    controller.on_success()
    status = controller.get_status()
    assert status["failures"] == 1
    assert status["successes"] == 1
    assert status["max_delay"] == 8.0
