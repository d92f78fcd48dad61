# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/admin/interface.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Tuple

from shardstrap.config.models import (
    CollectionSchema,
    IndexSpec,
    KeyField,
    PrincipalSpec,
    ReplicaGroupSpec,
)
from .models import (
    BalancerStatus,
    GroupConfig,
    GroupStatus,
    NodeRole,
    PrincipalRecord,
    ShardRecord,
)


class ClusterAdmin(Protocol):
    """
    Administrative RPC surface of the database cluster.

    ``host`` arguments address a single member (host:port); ``router``
    arguments are a comma-separated seed list of routing-tier endpoints.

    Implementations translate their wire errors into the bootstrap taxonomy:
    unreachable / not primary / interrupted -> TransientStepError,
    "already exists" -> AlreadySatisfied, semantic conflicts -> ConflictingState.
    """

    # replica groups
    def initiate_group(self, host: str, group: ReplicaGroupSpec) -> None: ...
    def group_config(self, host: str) -> Optional[GroupConfig]: ...
    def group_status(self, host: str) -> GroupStatus: ...
    def hello(self, host: str) -> NodeRole: ...

    # principals
    def get_principal(self, host: str, database: str, username: str) -> Optional[PrincipalRecord]: ...
    def create_principal(self, host: str, spec: PrincipalSpec) -> None: ...

    # routing tier
    def add_shard(self, router: str, group: ReplicaGroupSpec) -> None: ...
    def list_shards(self, router: str) -> List[ShardRecord]: ...

    # schema and partitioning
    def list_collections(self, router: str, database: str) -> Dict[str, Optional[Dict[str, Any]]]: ...
    def create_collection(self, router: str, collection: CollectionSchema, validator: Dict[str, Any]) -> None: ...
    def list_indexes(self, router: str, collection: CollectionSchema) -> List[Tuple[Tuple[str, Any], ...]]: ...
    def create_index(self, router: str, collection: CollectionSchema, index: IndexSpec) -> None: ...
    def enable_sharding(self, router: str, database: str) -> None: ...
    def shard_key(self, router: str, collection: CollectionSchema) -> Optional[List[KeyField]]: ...
    def shard_collection(self, router: str, collection: CollectionSchema) -> None: ...

    # balancer
    def balancer_start(self, router: str) -> None: ...
    def balancer_status(self, router: str) -> BalancerStatus: ...
    def balancer_force_round(self, router: str) -> None: ...

    def close(self) -> None: ...
