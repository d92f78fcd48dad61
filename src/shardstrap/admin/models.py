# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/admin/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class MemberState:
    host: str
    state: str              # PRIMARY | SECONDARY | STARTUP2 | ARBITER | ...
    healthy: bool = True


@dataclass(frozen=True)
class GroupStatus:
    primary_observed: bool
    members: List[MemberState] = field(default_factory=list)
    primary: Optional[str] = None

    @classmethod
    def from_members(cls, members: List[MemberState]) -> "GroupStatus":
        primary = next((m.host for m in members if m.state == "PRIMARY"), None)
        return cls(primary_observed=primary is not None, members=members, primary=primary)


@dataclass(frozen=True)
class GroupConfig:
    """Replica group configuration read back from a member."""
    group_id: str
    hosts: List[str]
    config_role: bool = False


@dataclass(frozen=True)
class NodeRole:
    host: str
    is_primary: bool
    group_id: Optional[str] = None
    primary: Optional[str] = None   # primary as seen by this node


@dataclass(frozen=True)
class PrincipalRecord:
    username: str
    database: str
    roles: List[Tuple[str, str]]    # (role, db)


@dataclass(frozen=True)
class ShardRecord:
    id: str
    host: str


@dataclass(frozen=True)
class BalancerStatus:
    enabled: bool
    running: bool
