# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/bootstrap/principal.py
from __future__ import annotations

import logging
from typing import Optional

from shardstrap.admin.interface import ClusterAdmin
from shardstrap.admin.models import PrincipalRecord
from shardstrap.config.models import PrincipalSpec, ReplicaGroupSpec
from shardstrap.errors import AlreadySatisfied, ConflictingState, TransientStepError
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import PrincipalProvisioned

log = logging.getLogger("shardstrap")


class PrincipalProvisioner:
    """Creates the administrative principal on a group's primary, once."""

    def __init__(self, admin: ClusterAdmin, *, bus: Optional[EventBus] = None):
        self.admin = admin
        self.bus = bus or EventBus()

    def _find_primary(self, group: ReplicaGroupSpec) -> str:
        for host in group.hosts:
            try:
                role = self.admin.hello(host)
            except TransientStepError as exc:
                log.debug("[%s] %s unreachable: %s", group.id, host, exc)
                continue
            if role.is_primary:
                return host
            if role.primary and role.primary in group.hosts:
                return role.primary
        raise TransientStepError(f"group '{group.id}' has no writable primary yet")

    def _check_role(self, existing: PrincipalRecord, spec: PrincipalSpec, group: ReplicaGroupSpec) -> None:
        wanted = (spec.role, spec.grant_database)
        if wanted not in existing.roles:
            raise ConflictingState(
                f"principal '{spec.username}@{spec.database}' already exists on '{group.id}' "
                f"with roles {existing.roles}, declared {wanted}"
            )

    def provision(self, group: ReplicaGroupSpec, spec: PrincipalSpec) -> None:
        primary = self._find_primary(group)
        log.debug("[%s] provisioning principal %s on %s", group.id, spec.username, primary)

        existing = self.admin.get_principal(primary, spec.database, spec.username)
        if existing is not None:
            self._check_role(existing, spec, group)
            log.info("[%s] principal %s already present", group.id, spec.username)
            self.bus.publish(PrincipalProvisioned, group=group.id, username=spec.username, created=False)
            return

        try:
            self.admin.create_principal(primary, spec)
        except AlreadySatisfied:
            # created concurrently between lookup and create
            existing = self.admin.get_principal(primary, spec.database, spec.username)
            if existing is None:
                raise TransientStepError(f"principal '{spec.username}' reported as existing but not readable")
            self._check_role(existing, spec, group)
            self.bus.publish(PrincipalProvisioned, group=group.id, username=spec.username, created=False)
            return

        log.info("[%s] principal %s created with role %s", group.id, spec.username, spec.role)
        self.bus.publish(PrincipalProvisioned, group=group.id, username=spec.username, created=True)
