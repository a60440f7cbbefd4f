"""Retry with exponential backoff for generation calls, built on tenacity.

Attempt ``n`` (1-based) that fails is followed by a sleep of
``backoff * 2 ** (n - 1)`` seconds, so ``backoff=0.01`` sleeps 10 ms, then
20 ms, then 40 ms.  Sleeps wait on the shared cancel event, so a cancelled
extraction wakes every backing-off batch immediately.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import GenerationCancelled, is_retryable
from .utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def cancellable_sleep(cancel: Optional[threading.Event]) -> Callable[[float], None]:
    """Return a sleep function that raises :class:`GenerationCancelled` when *cancel* fires."""

    def _sleep(seconds: float) -> None:
        if cancel is None:
            threading.Event().wait(seconds)
            return
        if cancel.wait(seconds):
            raise GenerationCancelled("cancelled during retry backoff")

    return _sleep


def _log_before_sleep(label: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            f"[{label}] attempt {state.attempt_number} failed: {exc}; retrying in {delay:.3f}s"
        )

    return _before_sleep


def call_with_retry(
    call: Callable[[], T],
    *,
    max_retries: int = 0,
    backoff: float = 0.0,
    cancel: Optional[threading.Event] = None,
    sleep: Optional[Callable[[float], None]] = None,
    label: str = "call",
) -> T:
    """Run *call*, retrying up to *max_retries* extra times on retryable errors.

    Args:
        call: Zero-argument callable performing one attempt.
        max_retries: Extra attempts after the first; 0 disables retrying.
        backoff: Base delay in seconds, doubled after every failure.
        cancel: Shared cancel event checked before every attempt and during sleeps.
        sleep: Override for the sleep function (tests record delays with it).
        label: Name used in log lines.

    Returns:
        The first successful result.

    Raises:
        The last exception once attempts are exhausted, any non-retryable
        exception immediately, or :class:`GenerationCancelled`.
    """

    def attempt() -> T:
        if cancel is not None and cancel.is_set():
            raise GenerationCancelled("cancelled before attempt")
        return call()

    if max_retries <= 0:
        return attempt()

    retrying = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=backoff, exp_base=2, min=0),
        retry=retry_if_exception(is_retryable),
        sleep=sleep or cancellable_sleep(cancel),
        before_sleep=_log_before_sleep(label),
        reraise=True,
    )
    return retrying(attempt)


__all__ = ["call_with_retry", "cancellable_sleep"]
