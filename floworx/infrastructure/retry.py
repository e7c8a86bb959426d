"""
Bounded retry for provider API calls.

Gmail and Outlook calls share one policy: at most PROVIDER_MAX_RETRIES
attempts, exponential backoff, and only transient failures (429, 5xx,
network) are retried. Anything else surfaces immediately as a
ProviderApiError so the reconciler can report it per operation.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from floworx.config import (
    PROVIDER_MAX_RETRIES,
    PROVIDER_RETRY_BASE_DELAY,
    PROVIDER_RETRY_MAX_DELAY,
)
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event

T = TypeVar("T")

logger = get_logger(__name__)


class ProviderApiError(RuntimeError):
    """Mail provider call failed. ``status_code`` is None for network errors."""

    def __init__(self, message: str, status_code: int | None = None, provider: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider

    @property
    def is_transient(self) -> bool:
        status = self.status_code
        if status is None:
            return True
        return bool(status == 429 or 500 <= status < 600)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderApiError) and exc.is_transient


def _before_sleep(stage: str) -> Callable[[RetryCallState], None]:
    def _log(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        counter("provider.retry_count")
        log_event(
            "provider.retry_scheduled",
            stage=stage,
            attempt=state.attempt_number,
            status=getattr(exc, "status_code", None),
        )

    return _log


def with_provider_retry(
    func: Callable[..., T],
    *args,
    stage: str = "provider",
    max_attempts: int = PROVIDER_MAX_RETRIES,
    sleep_fn: Callable[[float], None] = time.sleep,
    **kwargs,
) -> T:
    """
    Call ``func`` with bounded exponential-backoff retry on transient errors.

    Args:
        func: Provider call to execute
        stage: Label used in telemetry (e.g. "gmail.create_label")
        max_attempts: Attempt budget, capped at PROVIDER_MAX_RETRIES
        sleep_fn: Injectable sleep (tests pass a no-op)

    Returns:
        Whatever ``func`` returns

    Raises:
        ProviderApiError: Permanent failure, or transient failure after the budget
    """
    retrying = Retrying(
        stop=stop_after_attempt(min(max_attempts, PROVIDER_MAX_RETRIES)),
        wait=wait_exponential(
            multiplier=PROVIDER_RETRY_BASE_DELAY,
            min=PROVIDER_RETRY_BASE_DELAY,
            max=PROVIDER_RETRY_MAX_DELAY,
        ),
        retry=retry_if_exception(_is_transient),
        before_sleep=_before_sleep(stage),
        sleep=sleep_fn,
        reraise=True,
    )
    try:
        return retrying(func, *args, **kwargs)
    except ProviderApiError as exc:
        logger.warning(
            "Provider call %s failed (status=%s, transient=%s): %s",
            stage,
            exc.status_code,
            exc.is_transient,
            exc,
        )
        raise
