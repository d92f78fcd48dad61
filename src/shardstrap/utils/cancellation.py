# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading

from shardstrap.errors import Cancelled


class CancellationToken:
    """
    Shared stop signal for a bootstrap run.

    Every backoff and poll interval waits on this token instead of
    time.sleep(), so cancel() wakes all waiters immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason or "cancelled")

    def wait(self, seconds: float) -> None:
        """Sleep up to *seconds*; raise Cancelled as soon as the token fires."""
        if seconds > 0:
            self._event.wait(seconds)
        self.raise_if_cancelled()
