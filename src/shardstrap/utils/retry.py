# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/utils/retry.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from shardstrap.errors import RetryExhausted, TransientStepError
from shardstrap.utils.cancellation import CancellationToken

log = logging.getLogger("shardstrap")

T = TypeVar("T")


class RetryPolicy:
    """
    Fixed-interval retry executor for idempotent bootstrap steps.

    max_attempts: default number of attempts
    interval: default seconds between attempts
    token: cancellation token every wait is performed on
    """

    def __init__(
        self,
        *,
        max_attempts: int = 30,
        interval: float = 5.0,
        token: Optional[CancellationToken] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.interval = interval
        self.token = token or CancellationToken()

    def execute(
        self,
        operation: Callable[[], T],
        *,
        step: str,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        on_retry: Optional[Callable[[int, Exception], None]] = None,
    ) -> T:
        """
        Call *operation* until it returns. Only TransientStepError is retried;
        any other exception propagates on the attempt that raised it.
        """
        attempts = max_attempts or self.max_attempts
        wait_s = self.interval if interval is None else interval
        started = time.monotonic()
        last_exc: Optional[TransientStepError] = None

        for attempt in range(1, attempts + 1):
            self.token.raise_if_cancelled()
            try:
                return operation()
            except TransientStepError as exc:
                last_exc = exc
                elapsed = time.monotonic() - started
                log.warning(
                    "[%s] attempt %d/%d failed after %.1fs: %s",
                    step, attempt, attempts, elapsed, exc,
                )
                if on_retry:
                    on_retry(attempt, exc)
                if attempt == attempts:
                    break
                self.token.wait(wait_s)

        raise RetryExhausted(step, attempts, last_exc) from last_exc


def poll_until(
    predicate: Callable[[], T],
    *,
    timeout: float,
    interval: float,
    token: Optional[CancellationToken] = None,
    describe: str = "condition",
) -> Optional[T]:
    """
    Bounded wait-for-predicate.

    Returns the first truthy value produced by *predicate*, or None once
    *timeout* seconds have elapsed. A TransientStepError from the predicate
    counts as "not yet".
    """
    token = token or CancellationToken()
    deadline = time.monotonic() + timeout

    while True:
        token.raise_if_cancelled()
        try:
            result = predicate()
            if result:
                return result
        except TransientStepError as exc:
            log.debug("waiting for %s: %s", describe, exc)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            log.debug("gave up waiting for %s after %.1fs", describe, timeout)
            return None
        token.wait(min(interval, remaining))
