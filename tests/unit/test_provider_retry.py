"""Tests for bounded provider retries."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from floworx.infrastructure.retry import ProviderApiError, with_provider_retry
from floworx.observability.telemetry import get_counter


def _no_sleep(_seconds):
    return None


@pytest.mark.parametrize(
    ("status", "transient"),
    [(None, True), (429, True), (500, True), (503, True), (400, False), (403, False), (404, False)],
)
def test_transient_classification(status, transient):
    assert ProviderApiError("x", status).is_transient is transient


def test_success_passes_through_arguments():
    func = Mock(return_value="ok")
    assert with_provider_retry(func, "a", stage="t", sleep_fn=_no_sleep, key="b") == "ok"
    func.assert_called_once_with("a", key="b")


def test_transient_failure_retried_until_success():
    func = Mock(side_effect=[ProviderApiError("rate", 429), ProviderApiError("down", 502), "ok"])
    sleeps = []

    assert with_provider_retry(func, sleep_fn=sleeps.append) == "ok"
    assert func.call_count == 3
    assert len(sleeps) == 2
    assert get_counter("provider.retry_count") == 2


def test_at_most_three_attempts():
    func = Mock(side_effect=ProviderApiError("down", 503))

    with pytest.raises(ProviderApiError) as exc_info:
        with_provider_retry(func, max_attempts=10, sleep_fn=_no_sleep)

    assert func.call_count == 3
    assert exc_info.value.status_code == 503


def test_permanent_failure_not_retried():
    func = Mock(side_effect=ProviderApiError("forbidden", 403))

    with pytest.raises(ProviderApiError):
        with_provider_retry(func, sleep_fn=_no_sleep)
    assert func.call_count == 1


def test_other_exceptions_propagate_immediately():
    func = Mock(side_effect=KeyError("id"))
    with pytest.raises(KeyError):
        with_provider_retry(func, sleep_fn=_no_sleep)
    assert func.call_count == 1
