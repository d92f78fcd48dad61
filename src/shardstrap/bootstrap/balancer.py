# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/bootstrap/balancer.py
from __future__ import annotations

import logging
from typing import Optional

from shardstrap.admin.interface import ClusterAdmin
from shardstrap.admin.models import BalancerStatus
from shardstrap.errors import TransientStepError
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import BalancerActive, BalancerNotSettled
from shardstrap.utils.cancellation import CancellationToken
from shardstrap.utils.retry import poll_until

log = logging.getLogger("shardstrap")


class BalancerController:
    def __init__(
        self,
        admin: ClusterAdmin,
        router: str,
        *,
        bus: Optional[EventBus] = None,
        token: Optional[CancellationToken] = None,
        wait_seconds: float = 60,
        poll_seconds: float = 2,
    ):
        self.admin = admin
        self.router = router
        self.bus = bus or EventBus()
        self.token = token or CancellationToken()
        self.wait_seconds = wait_seconds
        self.poll_seconds = poll_seconds

    def enable(self) -> None:
        if self.admin.balancer_status(self.router).enabled:
            log.debug("[balancer] already enabled")
            return
        log.info("[balancer] enabling")
        self.admin.balancer_start(self.router)

    def status(self) -> BalancerStatus:
        return self.admin.balancer_status(self.router)

    def force_round(self) -> None:
        log.info("[balancer] forcing a balancing round")
        self.admin.balancer_force_round(self.router)

    def wait_until_active(self) -> bool:
        """
        Poll until the balancer is both enabled and running. A timeout is a
        warning only: the cluster serves traffic without an immediate round.
        Against mongos, "running" means a round is in progress, so an idle
        new cluster commonly ends here with BalancerNotSettled.
        """
        def _active() -> Optional[BalancerStatus]:
            s = self.status()
            return s if (s.enabled and s.running) else None

        status = poll_until(
            _active,
            timeout=self.wait_seconds,
            interval=self.poll_seconds,
            token=self.token,
            describe="balancer",
        )
        if status is not None:
            self.bus.publish(BalancerActive, enabled=True, running=True)
            return True

        try:
            last = self.status()
        except TransientStepError as exc:
            log.debug("[balancer] status unavailable: %s", exc)
            last = BalancerStatus(enabled=False, running=False)
        log.warning(
            "[balancer] not settled after %ss (enabled=%s running=%s)",
            self.wait_seconds, last.enabled, last.running,
        )
        self.bus.publish(
            BalancerNotSettled, enabled=last.enabled, running=last.running, timeout_s=self.wait_seconds
        )
        return False
