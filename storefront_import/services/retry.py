"""
Batch-level retry with tenacity.

Only the page fetch and the best-effort count are retried; record-level
reconciliation never is.  An error is retried when it carries
``retryable = True`` (``ExternalSourceUnavailableError``).  Exhaustion
raises ``BatchRetryExhaustedError``; non-retryable errors propagate on
the first attempt.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from storefront_config.schema import RetrySettings
from storefront_kernel.exceptions import BatchRetryExhaustedError
from storefront_kernel.logging_config import get_logger

logger = get_logger("import.retry")

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter.

    max_attempts is the TOTAL number of tries, so 3 means try, retry, retry.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            exponential_base=settings.exponential_base,
            jitter=settings.jitter,
        )

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)


class RetryRunner:
    """Runs an operation under a ``RetryPolicy``.

    ``sleep`` is injectable so tests don't wait out the backoff.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def call(self, operation: Callable[[], T], name: str) -> T:
        """Run ``operation`` and return its result.

        Raises:
            BatchRetryExhaustedError: If every attempt failed with a
                retryable error.
            Exception: The first non-retryable error, unchanged.
        """
        policy = self._policy
        attempt = 0
        last_error: BaseException | None = None

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(policy.max_attempts),
                wait=wait_exponential_jitter(
                    initial=policy.base_delay,
                    max=policy.max_delay,
                    exp_base=policy.exponential_base,
                    jitter=policy.jitter,
                ),
                retry=retry_if_exception(is_retryable),
                sleep=self._sleep,
                reraise=False,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as exc:
                        last_error = exc
                        if is_retryable(exc) and attempt < policy.max_attempts:
                            logger.warning(
                                "import_retrying",
                                extra={
                                    "operation": name,
                                    "attempt": attempt,
                                    "max_attempts": policy.max_attempts,
                                    "error": str(exc),
                                },
                            )
                        raise
        except RetryError as exc:
            final_error = last_error or exc.last_attempt.exception()
            raise BatchRetryExhaustedError(name, attempt, str(final_error)) from final_error

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
