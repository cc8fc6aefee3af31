"""Unit tests for readiness polling."""

import logging
from unittest.mock import patch

import pytest

from proxy_overlord.core.readiness import ReadinessProber, any_of
from proxy_overlord.domain.exceptions import ReadinessTimeoutError


def predicate_true_after(failures: int):
    """Predicate that fails ``failures`` times and then holds."""
    calls = {"count": 0}

    def predicate() -> bool:
        calls["count"] += 1
        return calls["count"] > failures

    predicate.calls = calls
    return predicate


class TestWaitFor:
    """Tests for ReadinessProber.wait_for."""

    def test_returns_immediately_when_goal_holds(self) -> None:
        prober = ReadinessProber(interval=1.0)

        with patch("time.sleep") as mock_sleep:
            attempts = prober.wait_for("nothing", lambda: True)

        assert attempts == 0
        mock_sleep.assert_not_called()

    def test_polls_at_interval_until_goal_holds(self) -> None:
        prober = ReadinessProber(interval=0.25)
        predicate = predicate_true_after(3)

        with patch("time.sleep") as mock_sleep:
            attempts = prober.wait_for("three failures", predicate)

        assert attempts == 3
        assert predicate.calls["count"] == 4
        assert mock_sleep.call_count == 3
        mock_sleep.assert_called_with(0.25)

    def test_reports_progress_every_n_attempts(self, caplog: pytest.LogCaptureFixture) -> None:
        prober = ReadinessProber(interval=0, report_every=60)

        with patch("time.sleep"), caplog.at_level(logging.INFO):
            prober.wait_for("slow goal", predicate_true_after(125))

        waiting = [r for r in caplog.records if r.getMessage() == "waiting for slow goal"]
        # attempts 0, 60, 120
        assert len(waiting) == 3

    def test_escape_raises_timeout(self) -> None:
        prober = ReadinessProber(interval=0)
        escape_calls = {"count": 0}

        def escape() -> bool:
            escape_calls["count"] += 1
            return escape_calls["count"] >= 2

        with patch("time.sleep"), pytest.raises(ReadinessTimeoutError, match="never"):
            prober.wait_for("never", lambda: False, escape=escape)

        assert escape_calls["count"] == 2

    def test_with_escape_applies_to_every_wait(self) -> None:
        prober = ReadinessProber(interval=0).with_escape(lambda: True)

        with patch("time.sleep"), pytest.raises(ReadinessTimeoutError):
            prober.wait_for("never", lambda: False)

    def test_predicate_errors_propagate(self) -> None:
        def predicate() -> bool:
            raise RuntimeError("probe broke")

        with pytest.raises(RuntimeError, match="probe broke"):
            ReadinessProber(interval=0).wait_for("broken", predicate)


class TestEscapes:
    def test_any_of_ignores_none(self) -> None:
        assert any_of(None, None) is None

    def test_any_of_single_escape_is_returned_as_is(self) -> None:
        def escape() -> bool:
            return False

        assert any_of(None, escape) is escape

    def test_any_of_fires_when_any_fires(self) -> None:
        combined = any_of(lambda: False, lambda: True)

        assert combined is not None
        assert combined()
