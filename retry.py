import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry a call a fixed number of times with a (optionally growing) delay.

    ``max_attempts`` counts the first call, so the default of 3 means two
    retries. ``backoff`` multiplies the delay after each failure; 1.0 keeps
    it fixed.
    """

    max_attempts: int = 3
    delay_secs: float = 3.0
    backoff: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            max_attempts=settings.provider_retry_attempts,
            delay_secs=settings.provider_retry_delay_secs,
        )

    def call(self, fn: Callable[[], T], *, label: str = "call") -> T:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        delay = self.delay_secs
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except self.retry_on as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        f"retry_exhausted: label={label} attempts={attempt} error={exc}"
                    )
                    raise
                logger.warning(
                    f"retry: label={label} attempt={attempt} delay={delay} error={exc}"
                )
                self.sleep(delay)
                delay *= self.backoff
        raise AssertionError("unreachable")
