# src/shardstrap/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helpers
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str                 # ISO timestamp
    run_id: str             # correlates all events in a single bootstrap invocation
    env: str                # dev/staging/prod
    cluster: Optional[str]  # cluster name from the config

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(env: str, cluster: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": _now(),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "cluster": cluster,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of *ctx* with a fresh timestamp."""
    return {**ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapStarted(BaseEvent):
    shards: List[str]
    routers: List[str]

@dataclass(frozen=True)
class PhaseReached(BaseEvent):
    phase: str

@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    status: str                 # "DONE" | "FAILED" | "CANCELLED"
    phase: str
    failed_step: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None


# ---------------------------------------------------------------------
# Step lifecycle (RetryPolicy)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    step: str
    max_attempts: int

@dataclass(frozen=True)
class StepAttemptFailed(BaseEvent):
    step: str
    attempt: int
    max_attempts: int
    elapsed_s: float
    error: str

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    step: str
    attempts: int
    duration_ms: int

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    step: str
    attempts: int
    error: str


# ---------------------------------------------------------------------
# Replica groups
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class GroupInitiated(BaseEvent):
    group: str
    already_initialized: bool

@dataclass(frozen=True)
class PrimaryObserved(BaseEvent):
    group: str
    primary: str

@dataclass(frozen=True)
class PrimaryWaitTimedOut(BaseEvent):
    group: str
    timeout_s: float


# ---------------------------------------------------------------------
# Principal, routing, schema
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PrincipalProvisioned(BaseEvent):
    group: str
    username: str
    created: bool

@dataclass(frozen=True)
class ShardRegistered(BaseEvent):
    shard: str
    already_registered: bool

@dataclass(frozen=True)
class ShardsVerified(BaseEvent):
    registered: List[str]

@dataclass(frozen=True)
class CollectionEnsured(BaseEvent):
    namespace: str
    created: bool

@dataclass(frozen=True)
class IndexEnsured(BaseEvent):
    namespace: str
    keys: str
    created: bool

@dataclass(frozen=True)
class CollectionSharded(BaseEvent):
    namespace: str
    key: str
    applied: bool


# ---------------------------------------------------------------------
# Balancer
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BalancerActive(BaseEvent):
    enabled: bool
    running: bool

@dataclass(frozen=True)
class BalancerNotSettled(BaseEvent):
    enabled: bool
    running: bool
    timeout_s: float
