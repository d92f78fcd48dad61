# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/bootstrap/topology.py
from __future__ import annotations

import logging
from typing import Iterable, Optional, Set

from shardstrap.admin.interface import ClusterAdmin
from shardstrap.config.models import ReplicaGroupSpec
from shardstrap.errors import AlreadySatisfied, ConflictingState, RegistrationMismatch
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import ShardRegistered, ShardsVerified

log = logging.getLogger("shardstrap")


class TopologyRegistrar:
    """Registers shard groups with the routing tier and reads them back."""

    def __init__(self, admin: ClusterAdmin, router: str, *, bus: Optional[EventBus] = None):
        self.admin = admin
        self.router = router
        self.bus = bus or EventBus()

    def list_registered(self) -> Set[str]:
        return {s.id for s in self.admin.list_shards(self.router)}

    def register_shard(self, group: ReplicaGroupSpec) -> None:
        registered = {s.id: s.host for s in self.admin.list_shards(self.router)}
        if group.id in registered:
            # the routing tier reports "<set>/<h1>,<h2>"; compare the member set only
            _, _, member_list = registered[group.id].partition("/")
            hosts = {h for h in member_list.split(",") if h}
            if hosts and hosts != set(group.hosts):
                raise ConflictingState(
                    f"shard '{group.id}' is registered as {registered[group.id]}, "
                    f"declared {group.connection_string}"
                )
            log.info("[routing] shard %s already registered", group.id)
            self.bus.publish(ShardRegistered, shard=group.id, already_registered=True)
            return

        try:
            log.info("[routing] adding shard %s", group.connection_string)
            self.admin.add_shard(self.router, group)
        except AlreadySatisfied:
            self.bus.publish(ShardRegistered, shard=group.id, already_registered=True)
            return
        self.bus.publish(ShardRegistered, shard=group.id, already_registered=False)

    def verify(self, expected: Iterable[str]) -> Set[str]:
        expected = set(expected)
        registered = self.list_registered()
        if registered != expected:
            raise RegistrationMismatch(expected, registered)
        self.bus.publish(ShardsVerified, registered=sorted(registered))
        return registered
