# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/bootstrap/replica_group.py
from __future__ import annotations

import logging
from typing import List, Optional

from shardstrap.admin.interface import ClusterAdmin
from shardstrap.admin.models import GroupStatus
from shardstrap.config.models import ReplicaGroupSpec
from shardstrap.errors import (
    AlreadySatisfied,
    ConflictingState,
    PrimaryNotObserved,
    TransientStepError,
)
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import GroupInitiated, PrimaryObserved, PrimaryWaitTimedOut
from shardstrap.utils.cancellation import CancellationToken
from shardstrap.utils.retry import poll_until

log = logging.getLogger("shardstrap")


class ReplicaGroupInitializer:
    """
    Brings one replica group from "no group" to "primary elected".

    initiate() is safe to repeat: a group that is already formed with the
    same members converges instead of failing.
    """

    def __init__(
        self,
        admin: ClusterAdmin,
        *,
        bus: Optional[EventBus] = None,
        token: Optional[CancellationToken] = None,
        primary_wait_seconds: float = 60,
        poll_seconds: float = 2,
    ):
        self.admin = admin
        self.bus = bus or EventBus()
        self.token = token or CancellationToken()
        self.primary_wait_seconds = primary_wait_seconds
        self.poll_seconds = poll_seconds

    # ------------------------------------------------------------------
    def _check_equivalent(self, spec: ReplicaGroupSpec, host: str) -> None:
        current = self.admin.group_config(host)
        if current is None:
            # initiate reported "already initialized" but the config is not installed yet
            raise TransientStepError(
                f"group '{spec.id}': {host} reports initialized but returned no config"
            )
        if current.group_id != spec.id:
            raise ConflictingState(
                f"{host} already belongs to group '{current.group_id}', expected '{spec.id}'"
            )
        if set(current.hosts) != set(spec.hosts):
            raise ConflictingState(
                f"group '{spec.id}' already initialized with members {sorted(current.hosts)}, "
                f"declared {sorted(spec.hosts)}"
            )
        if current.config_role != spec.config_role:
            raise ConflictingState(
                f"group '{spec.id}' config_role is {current.config_role}, declared {spec.config_role}"
            )

    def _members_seed_first(self, spec: ReplicaGroupSpec) -> List[str]:
        seed = spec.seed.host
        return [seed, *(h for h in spec.hosts if h != seed)]

    def _formed_peer(self, spec: ReplicaGroupSpec) -> Optional[str]:
        """A non-seed member that already holds a group config, if any is reachable."""
        for host in self._members_seed_first(spec)[1:]:
            try:
                if self.admin.group_config(host) is not None:
                    return host
            except TransientStepError as exc:
                log.debug("[%s] %s unreachable: %s", spec.id, host, exc)
        return None

    def _read_status(self, spec: ReplicaGroupSpec) -> GroupStatus:
        last: Optional[TransientStepError] = None
        for host in self._members_seed_first(spec):
            try:
                return self.admin.group_status(host)
            except TransientStepError as exc:
                last = exc
        raise TransientStepError(f"group '{spec.id}': no member reports status ({last})")

    def _status_if_primary(self, spec: ReplicaGroupSpec) -> Optional[GroupStatus]:
        status = self._read_status(spec)
        return status if status.primary_observed else None

    # ------------------------------------------------------------------
    def initiate(self, spec: ReplicaGroupSpec, *, require_primary: bool = True) -> GroupStatus:
        seed = spec.seed.host
        already = False
        try:
            log.info("[%s] initiating replica group via %s", spec.id, seed)
            self.admin.initiate_group(seed, spec)
        except AlreadySatisfied:
            already = True
            log.info("[%s] already initialized, checking member set", spec.id)
            self._check_equivalent(spec, seed)
        except TransientStepError:
            # a formed group survives the loss of its seed
            peer = self._formed_peer(spec)
            if peer is None:
                raise
            already = True
            log.info("[%s] seed %s unreachable, %s reports the group formed", spec.id, seed, peer)
            self._check_equivalent(spec, peer)

        self.bus.publish(GroupInitiated, group=spec.id, already_initialized=already)

        status = poll_until(
            lambda: self._status_if_primary(spec),
            timeout=self.primary_wait_seconds,
            interval=self.poll_seconds,
            token=self.token,
            describe=f"primary of {spec.id}",
        )
        if status is not None:
            log.info("[%s] primary is %s", spec.id, status.primary)
            self.bus.publish(PrimaryObserved, group=spec.id, primary=status.primary)
            return status

        self.bus.publish(PrimaryWaitTimedOut, group=spec.id, timeout_s=self.primary_wait_seconds)
        if require_primary:
            raise PrimaryNotObserved(spec.id, self.primary_wait_seconds)

        last = GroupStatus(primary_observed=False)
        try:
            last = self._read_status(spec)
        except TransientStepError as exc:
            log.debug("[%s] status unavailable after wait: %s", spec.id, exc)
        return last
