# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/errors.py
from __future__ import annotations

from typing import Dict, Optional


class BootstrapError(RuntimeError):
    """Base class for bootstrap failures."""


class TransientStepError(BootstrapError):
    """Network or availability failure. Retried by RetryPolicy, never seen by the orchestrator."""


class ConflictingState(BootstrapError):
    """The cluster already holds state that contradicts the declared configuration."""


class PrimaryNotObserved(BootstrapError):
    """A replica group did not elect a primary within the bounded wait."""

    def __init__(self, group_id: str, waited_seconds: float):
        super().__init__(
            f"replica group '{group_id}' has no primary after {waited_seconds:g}s"
        )
        self.group_id = group_id
        self.waited_seconds = waited_seconds


class RegistrationMismatch(BootstrapError):
    """Registered shards read back from the routing tier differ from the expected set."""

    def __init__(self, expected: set[str], registered: set[str]):
        missing = sorted(expected - registered)
        unexpected = sorted(registered - expected)
        super().__init__(
            f"routing tier reports {len(registered)} shard(s), expected {len(expected)} "
            f"(missing={missing}, unexpected={unexpected})"
        )
        self.expected = expected
        self.registered = registered


class RetryExhausted(BootstrapError):
    """maxAttempts reached; wraps the last TransientStepError."""

    def __init__(self, step: str, attempts: int, last_error: Optional[BaseException]):
        super().__init__(
            f"step '{step}' failed after {attempts} attempt(s): {last_error}"
        )
        self.step = step
        self.attempts = attempts
        self.last_error = last_error


# Name used by operators and older tooling for the same failure.
BootstrapStepFailed = RetryExhausted


class BarrierFailure(BootstrapError):
    """At least one member of a concurrent phase failed terminally."""

    def __init__(self, phase: str, failures: Dict[str, BaseException]):
        detail = "; ".join(f"{name}: {exc}" for name, exc in sorted(failures.items()))
        super().__init__(f"{phase}: {len(failures)} task(s) failed ({detail})")
        self.phase = phase
        self.failures = failures


class Cancelled(BootstrapError):
    """An external cancellation signal aborted the run."""


class ConfigurationInvalid(BootstrapError):
    """The configuration input could not be loaded or failed validation."""


class AlreadySatisfied(Exception):
    """
    Idempotency short-circuit raised by the admin layer when the requested
    state already exists. Components absorb it; it is not a failure.
    """
