"""Exponential backoff for rate limited mod.io calls."""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .api import ModioRateLimited

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Classification(enum.Enum):
    RATE_LIMITED = "rate_limited"
    TERMINAL = "terminal"


@dataclass
class RetryState:
    """Progress of one call through the backoff loop."""

    attempt: int = 0
    delay: int = 0
    classification: Classification | None = None
    last_error: Exception | None = None


Classifier = Callable[[Exception], Classification]
RetryCallback = Callable[[RetryState], None]


def classify_error(exc: Exception) -> Classification:
    if isinstance(exc, ModioRateLimited):
        return Classification.RATE_LIMITED
    return Classification.TERMINAL


def call_with_retry(
    operation: Callable[[], T],
    classify: Classifier = classify_error,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: RetryCallback | None = None,
) -> T:
    """
    Call ``operation`` until it succeeds.

    Rate limited failures sleep 0, 1, 3, 7, ... seconds (``d = 2 * d + 1``)
    before the next attempt, with no upper bound. Any terminal failure is
    re-raised unchanged without sleeping.
    """
    state = RetryState()
    while True:
        state.attempt += 1
        try:
            return operation()
        except Exception as e:
            state.classification = classify(e)
            state.last_error = e
            if state.classification is Classification.TERMINAL:
                raise
            logger.warning(
                "Attempt %d rate limited, retrying in %ds: %s", state.attempt, state.delay, e
            )
            if on_retry:
                on_retry(state)
            sleep(state.delay)
            state.delay = 2 * state.delay + 1


class Retrier:
    """``call_with_retry`` with the sleep function and callback bound once."""

    def __init__(
        self,
        classify: Classifier = classify_error,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: RetryCallback | None = None,
    ):
        self.classify = classify
        self.sleep = sleep
        self.on_retry = on_retry

    def __call__(self, operation: Callable[[], T]) -> T:
        return call_with_retry(
            operation, classify=self.classify, sleep=self.sleep, on_retry=self.on_retry
        )
