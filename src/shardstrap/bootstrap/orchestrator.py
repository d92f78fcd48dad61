# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/bootstrap/orchestrator.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, TypeVar

from shardstrap.admin.interface import ClusterAdmin
from shardstrap.config.models import BootstrapConfig, ReplicaGroupSpec
from shardstrap.errors import BarrierFailure, Cancelled, RetryExhausted
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import (
    BootstrapStarted,
    BootstrapSummary,
    PhaseReached,
    StepAttemptFailed,
    StepFailed,
    StepStarted,
    StepSucceeded,
    new_ctx,
)
from shardstrap.utils.cancellation import CancellationToken
from shardstrap.utils.retry import RetryPolicy

from .balancer import BalancerController
from .principal import PrincipalProvisioner
from .replica_group import ReplicaGroupInitializer
from .schema import SchemaInitializer
from .topology import TopologyRegistrar

log = logging.getLogger("shardstrap")

T = TypeVar("T")


class BootstrapPhase(str, Enum):
    INIT = "Init"
    CONFIG_GROUP_READY = "ConfigGroupReady"
    SHARD_GROUPS_READY = "ShardGroupsReady"
    ROUTING_REGISTERED = "RoutingRegistered"
    PRINCIPAL_READY = "PrincipalReady"
    SCHEMA_APPLIED = "SchemaApplied"
    BALANCER_ENABLED = "BalancerEnabled"
    DONE = "Done"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


PHASE_ORDER: List[BootstrapPhase] = [
    BootstrapPhase.INIT,
    BootstrapPhase.CONFIG_GROUP_READY,
    BootstrapPhase.SHARD_GROUPS_READY,
    BootstrapPhase.ROUTING_REGISTERED,
    BootstrapPhase.PRINCIPAL_READY,
    BootstrapPhase.SCHEMA_APPLIED,
    BootstrapPhase.BALANCER_ENABLED,
    BootstrapPhase.DONE,
]

SHARD_PHASE_STEP = "shard-groups"


@dataclass
class BootstrapState:
    """In-memory progress of one run. Never persisted: re-running is the recovery path."""

    phase: BootstrapPhase = BootstrapPhase.INIT
    step_index: int = 0
    current_step: Optional[str] = None
    attempts: Dict[str, int] = field(default_factory=dict)
    last_errors: Dict[str, str] = field(default_factory=dict)
    failed_step: Optional[str] = None
    history: List[BootstrapPhase] = field(default_factory=lambda: [BootstrapPhase.INIT])
    balancer_settled: Optional[bool] = None
    started_at: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def advance(self, phase: BootstrapPhase) -> None:
        expected = PHASE_ORDER[self.step_index + 1]
        if phase is not expected:
            raise RuntimeError(f"illegal transition {self.phase.value} -> {phase.value}")
        self.step_index += 1
        self.phase = phase
        self.history.append(phase)

    def count_attempt(self, step: str) -> int:
        with self._lock:
            self.attempts[step] = self.attempts.get(step, 0) + 1
            return self.attempts[step]

    def record_error(self, step: str, exc: BaseException) -> None:
        with self._lock:
            self.last_errors[step] = str(exc)

    def terminate(self, phase: BootstrapPhase, step: Optional[str]) -> None:
        self.phase = phase
        self.failed_step = step
        self.history.append(phase)

    @property
    def done(self) -> bool:
        return self.phase is BootstrapPhase.DONE


class BootstrapOrchestrator:
    """
    Config tier -> shard groups -> routing -> principal -> schema -> balancer.

    Every step runs under RetryPolicy and is individually idempotent, so a
    restarted process simply runs the whole sequence again.
    """

    def __init__(
        self,
        config: BootstrapConfig,
        admin: ClusterAdmin,
        *,
        bus: Optional[EventBus] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.config = config
        self.admin = admin
        self.bus = bus or EventBus(ctx=new_ctx(env=config.environment, cluster=config.name))
        self.token = token or CancellationToken()
        self.state = BootstrapState()

        s = config.settings
        router = config.topology.router_seed
        self.retry = RetryPolicy(
            max_attempts=s.retry.max_attempts,
            interval=s.retry.interval_seconds,
            token=self.token,
        )
        self.groups = ReplicaGroupInitializer(
            admin,
            bus=self.bus,
            token=self.token,
            primary_wait_seconds=s.primary_wait_seconds,
            poll_seconds=s.primary_poll_seconds,
        )
        self.principals = PrincipalProvisioner(admin, bus=self.bus)
        self.registrar = TopologyRegistrar(admin, router, bus=self.bus)
        self.schema = SchemaInitializer(admin, router, bus=self.bus)
        self.balancer = BalancerController(
            admin,
            router,
            bus=self.bus,
            token=self.token,
            wait_seconds=s.balancer_wait_seconds,
            poll_seconds=s.balancer_poll_seconds,
        )

    # ------------------------------------------------------------------
    def _step(self, family: str, step: str, operation: Callable[[], T]) -> T:
        policy = self.config.settings.retry_for(family)
        self.state.current_step = step
        self.bus.publish(StepStarted, step=step, max_attempts=policy.max_attempts)
        t0 = time.monotonic()

        def attempt() -> T:
            self.state.count_attempt(step)
            return operation()

        def on_retry(n: int, exc: Exception) -> None:
            self.state.record_error(step, exc)
            self.bus.publish(
                StepAttemptFailed,
                step=step,
                attempt=n,
                max_attempts=policy.max_attempts,
                elapsed_s=round(time.monotonic() - t0, 3),
                error=str(exc),
            )

        try:
            result = self.retry.execute(
                attempt,
                step=step,
                max_attempts=policy.max_attempts,
                interval=policy.interval_seconds,
                on_retry=on_retry,
            )
        except Cancelled:
            raise
        except Exception as exc:
            error = exc.last_error if isinstance(exc, RetryExhausted) and exc.last_error else exc
            self.state.record_error(step, error)
            self.bus.publish(
                StepFailed, step=step, attempts=self.state.attempts.get(step, 0), error=str(exc)
            )
            raise

        self.bus.publish(
            StepSucceeded,
            step=step,
            attempts=self.state.attempts.get(step, 0),
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return result

    def _advance(self, phase: BootstrapPhase) -> None:
        self.state.advance(phase)
        log.info("=== phase %s ===", phase.value)
        self.bus.publish(PhaseReached, phase=phase.value)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def _init_shard(self, group: ReplicaGroupSpec) -> None:
        self._step("shard-group", f"shard-group:{group.id}", lambda: self.groups.initiate(group))

    def _shard_groups(self) -> None:
        shards = self.config.topology.shards
        workers = self.config.settings.shard_concurrency or len(shards)
        failures: Dict[str, BaseException] = {}

        with ThreadPoolExecutor(max_workers=min(workers, len(shards)), thread_name_prefix="shard") as pool:
            futures = {pool.submit(self._init_shard, g): g.id for g in shards}
            for fut in as_completed(futures):
                try:
                    fut.result()
                except Exception as exc:
                    failures[futures[fut]] = exc

        self.state.current_step = SHARD_PHASE_STEP
        for exc in failures.values():
            if isinstance(exc, Cancelled):
                raise exc
        if failures:
            raise BarrierFailure(SHARD_PHASE_STEP, failures)

    def _routing(self) -> None:
        shards = self.config.topology.shards
        for group in shards:
            self._step("routing", f"routing:{group.id}", lambda g=group: self.registrar.register_shard(g))
        self._step("routing", "routing:verify", lambda: self.registrar.verify(g.id for g in shards))

    def _principal(self) -> None:
        spec = self.config.principal
        targets = spec.targets or [self.config.topology.config_group.id]
        for group_id in targets:
            group = self.config.topology.group(group_id)
            self._step("principal", f"principal:{group_id}", lambda g=group: self.principals.provision(g, spec))

    def _schema(self) -> None:
        for db in self.config.schema_:
            for coll in db.collections:
                self._step(
                    "schema",
                    f"schema:{coll.namespace}",
                    lambda d=db.name, c=coll: self.schema.apply_schema(d, c),
                )

    def _balancer(self) -> None:
        self._step("balancer", "balancer", self.balancer.enable)
        if self.config.settings.force_balancer_round:
            self._step("balancer", "balancer:force-round", self.balancer.force_round)
        self.state.balancer_settled = self.balancer.wait_until_active()

    # ------------------------------------------------------------------
    def run(self) -> BootstrapState:
        topo = self.config.topology
        self.bus.publish(
            BootstrapStarted,
            shards=[g.id for g in topo.shards],
            routers=[r.host for r in topo.routers],
        )

        try:
            delay = self.config.settings.startup_delay_seconds
            if delay:
                log.info("waiting %ss for members to start", delay)
                self.token.wait(delay)

            self._step("config-group", "config-group", lambda: self.groups.initiate(topo.config_group))
            self._advance(BootstrapPhase.CONFIG_GROUP_READY)

            self._shard_groups()
            self._advance(BootstrapPhase.SHARD_GROUPS_READY)

            self._routing()
            self._advance(BootstrapPhase.ROUTING_REGISTERED)

            self._principal()
            self._advance(BootstrapPhase.PRINCIPAL_READY)

            self._schema()
            self._advance(BootstrapPhase.SCHEMA_APPLIED)

            self._balancer()
            self._advance(BootstrapPhase.BALANCER_ENABLED)

            self._advance(BootstrapPhase.DONE)
        except Cancelled as exc:
            self._finish(BootstrapPhase.CANCELLED, exc)
            raise
        except Exception as exc:
            self._finish(BootstrapPhase.FAILED, exc)
            raise

        self._finish(BootstrapPhase.DONE, None)
        return self.state

    def _finish(self, phase: BootstrapPhase, exc: Optional[BaseException]) -> None:
        step = self.state.current_step
        attempts = 0
        if exc is not None:
            self.state.terminate(phase, step)
            attempts = self.state.attempts.get(step, 0) if step else 0
            if step and step not in self.state.last_errors:
                self.state.record_error(step, exc)
            log.error("bootstrap %s at step %s: %s", phase.value.lower(), step, exc)
        else:
            step = None
            elapsed = time.monotonic() - self.state.started_at
            log.info("bootstrap done in %.1fs", elapsed)

        self.bus.publish(
            BootstrapSummary,
            status=phase.name,
            phase=self.state.history[-2].value if exc is not None else phase.value,
            failed_step=step,
            attempts=attempts,
            error=str(exc) if exc is not None else None,
        )
