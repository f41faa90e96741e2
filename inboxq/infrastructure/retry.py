"""
Retry helper with exponential backoff and jitter for upstream calls.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from inboxq.infrastructure.errors import UpstreamError
from inboxq.observability.telemetry import counter, log_event

T = TypeVar("T")


@dataclass
class RetryPolicy:
    stage: str
    max_attempts: int = 2
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: float = 0.1
    sleep_fn: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def execute(self, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Run ``func``, retrying only errors flagged ``retryable``

        Retry n waits ``base_delay * 2**(n-1)`` seconds, capped at
        ``max_delay``, plus up to ``jitter`` seconds.
        """
        attempt = 0
        next_delay = self.base_delay

        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except UpstreamError as exc:
                log_event(
                    "stage_error",
                    stage=self.stage,
                    error=str(exc),
                    status=exc.status_code,
                    attempt=attempt,
                )
                if not exc.retryable or attempt >= self.max_attempts:
                    raise

            wait = min(next_delay, self.max_delay) + random.uniform(0, self.jitter)
            next_delay *= 2
            counter("retry_count")
            log_event("retry_scheduled", stage=self.stage, attempt=attempt, delay=round(wait, 3))
            self.sleep_fn(wait)
