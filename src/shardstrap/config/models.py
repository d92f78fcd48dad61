# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/config/models.py

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


def _check_endpoint(value: str) -> str:
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"endpoint must be host:port, got '{value}'")
    return value


# ----------------------------------------------------------------------
# Topology
# ----------------------------------------------------------------------
class MemberSpec(_Frozen):
    id: int = Field(ge=0)
    host: str
    priority: float = Field(default=1, ge=0)
    votes: int = Field(default=1, ge=0, le=1)
    arbiter_only: bool = False
    hidden: bool = False

    @field_validator("host")
    @classmethod
    def _endpoint(cls, v: str) -> str:
        return _check_endpoint(v)

    @model_validator(mode="after")
    def _non_electable(self) -> "MemberSpec":
        # hidden members and arbiters can never become primary
        if (self.hidden or self.arbiter_only) and self.priority != 0:
            kind = "hidden" if self.hidden else "arbiter_only"
            raise ValueError(f"member {self.host}: {kind} requires priority 0, got {self.priority:g}")
        return self


class ReplicaGroupSpec(_Frozen):
    """One replica group: the config tier or a data shard."""

    id: str = Field(min_length=1)
    members: List[MemberSpec] = Field(min_length=1)
    config_role: bool = False

    @model_validator(mode="after")
    def _unique_members(self) -> "ReplicaGroupSpec":
        ids = [m.id for m in self.members]
        if len(ids) != len(set(ids)):
            raise ValueError(f"group '{self.id}': member ids must be unique, got {ids}")
        hosts = [m.host for m in self.members]
        if len(hosts) != len(set(hosts)):
            raise ValueError(f"group '{self.id}': member hosts must be unique")
        return self

    @property
    def seed(self) -> MemberSpec:
        """Member that receives the initiate call: highest priority, first on ties."""
        best = self.members[0]
        for m in self.members[1:]:
            if m.priority > best.priority:
                best = m
        return best

    @property
    def hosts(self) -> List[str]:
        return [m.host for m in self.members]

    @property
    def connection_string(self) -> str:
        return f"{self.id}/{','.join(self.hosts)}"


class RouterSpec(_Frozen):
    name: str
    host: str

    @field_validator("host")
    @classmethod
    def _endpoint(cls, v: str) -> str:
        return _check_endpoint(v)


class ClusterTopology(_Frozen):
    config_group: ReplicaGroupSpec
    shards: List[ReplicaGroupSpec] = Field(min_length=1)
    routers: List[RouterSpec] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_roles(self) -> "ClusterTopology":
        if not self.config_group.config_role:
            raise ValueError(f"config group '{self.config_group.id}' must set config_role: true")
        for shard in self.shards:
            if shard.config_role:
                raise ValueError(f"shard '{shard.id}' cannot be the config tier")

        groups = self.groups
        ids = [g.id for g in groups]
        if len(ids) != len(set(ids)):
            raise ValueError(f"replica group ids must be unique, got {ids}")

        seen: Dict[str, str] = {}
        for g in groups:
            for host in g.hosts:
                if host in seen:
                    raise ValueError(f"host {host} is declared in both '{seen[host]}' and '{g.id}'")
                seen[host] = g.id
        return self

    @property
    def groups(self) -> List[ReplicaGroupSpec]:
        return [self.config_group, *self.shards]

    def group(self, group_id: str) -> ReplicaGroupSpec:
        for g in self.groups:
            if g.id == group_id:
                return g
        raise KeyError(group_id)

    @property
    def router_seed(self) -> str:
        return ",".join(r.host for r in self.routers)


# ----------------------------------------------------------------------
# Principal
# ----------------------------------------------------------------------
class PrincipalSpec(_Frozen):
    username: str = Field(min_length=1)
    secret: SecretStr
    database: str = "admin"
    role: str = "root"
    role_database: Optional[str] = None
    targets: List[str] = Field(default_factory=list)  # group ids; empty = config group only

    @field_validator("secret")
    @classmethod
    def _secret_present(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("principal secret is empty (set it in secrets.yaml or via ${ENV})")
        if v.get_secret_value().startswith("${"):
            raise ValueError("principal secret references an unset environment variable")
        return v

    @property
    def grant_database(self) -> str:
        return self.role_database or self.database


# ----------------------------------------------------------------------
# Schema
# ----------------------------------------------------------------------
class FieldType(_Frozen):
    bson_type: Optional[str] = None
    enum: Optional[List[str]] = None
    items: Optional["FieldType"] = None

    @model_validator(mode="after")
    def _one_constraint(self) -> "FieldType":
        if self.bson_type is None and self.enum is None and self.items is None:
            raise ValueError("field type needs bson_type, enum or items")
        if self.items is not None and self.bson_type not in (None, "array"):
            raise ValueError("items is only valid for array fields")
        return self


class KeyField(_Frozen):
    field: str
    direction: Union[Literal[1, -1], Literal["hashed"]] = 1


class IndexSpec(_Frozen):
    keys: List[KeyField] = Field(min_length=1)
    unique: bool = False
    name: Optional[str] = None

    @property
    def shape(self) -> tuple:
        return tuple((k.field, k.direction) for k in self.keys)


class CollectionSchema(_Frozen):
    database: str
    name: str
    required: List[str] = Field(default_factory=list)
    properties: Dict[str, FieldType] = Field(default_factory=dict)
    indexes: List[IndexSpec] = Field(default_factory=list)
    shard_key: List[KeyField] = Field(min_length=1)
    indexed_optional: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_shard_key(self) -> "CollectionSchema":
        undeclared = [f for f in self.required if f not in self.properties]
        if undeclared:
            raise ValueError(f"{self.namespace}: required fields without a type: {undeclared}")

        allowed = set(self.required) | set(self.indexed_optional)
        stray = [k.field for k in self.shard_key if k.field not in allowed]
        if stray:
            raise ValueError(
                f"{self.namespace}: shard key fields {stray} must be required "
                "or listed in indexed_optional"
            )
        if sum(1 for k in self.shard_key if k.direction == "hashed") > 1:
            raise ValueError(f"{self.namespace}: a shard key may hash at most one field")
        return self

    @property
    def namespace(self) -> str:
        return f"{self.database}.{self.name}"

    @property
    def shard_key_index(self) -> IndexSpec:
        return IndexSpec(keys=list(self.shard_key))


class DatabaseSchema(_Frozen):
    name: str
    collections: List[CollectionSchema] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _inject_database(cls, data: Any) -> Any:
        if isinstance(data, dict) and "name" in data:
            colls = []
            for c in data.get("collections") or []:
                if isinstance(c, dict):
                    c = {"database": data["name"], **c}
                colls.append(c)
            data = {**data, "collections": colls}
        return data

    @model_validator(mode="after")
    def _unique_collections(self) -> "DatabaseSchema":
        names = [c.name for c in self.collections]
        if len(names) != len(set(names)):
            raise ValueError(f"database '{self.name}': duplicate collections in {names}")
        return self


# ----------------------------------------------------------------------
# Run settings
# ----------------------------------------------------------------------
class RetrySettings(_Frozen):
    max_attempts: int = Field(default=30, ge=1)
    interval_seconds: float = Field(default=5.0, ge=0)


StepFamily = Literal["config-group", "shard-group", "routing", "principal", "schema", "balancer"]


class BootstrapSettings(_Frozen):
    retry: RetrySettings = RetrySettings()
    steps: Dict[StepFamily, RetrySettings] = Field(default_factory=dict)
    primary_wait_seconds: float = Field(default=60, ge=0)
    primary_poll_seconds: float = Field(default=2, gt=0)
    balancer_wait_seconds: float = Field(default=60, ge=0)
    balancer_poll_seconds: float = Field(default=2, gt=0)
    shard_concurrency: int = Field(default=0, ge=0)   # 0 = one worker per shard
    startup_delay_seconds: float = Field(default=0, ge=0)
    force_balancer_round: bool = False

    def retry_for(self, family: str) -> RetrySettings:
        return self.steps.get(family, self.retry)


class ConnectionSettings(_Frozen):
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    auth_source: str = "admin"
    tls: bool = False
    tls_ca_file: Optional[str] = None
    connect_timeout_ms: int = 5000
    server_selection_timeout_ms: int = 5000


class BootstrapConfig(_Frozen):
    name: str = "cluster"
    environment: Literal["dev", "staging", "prod"] = "dev"
    topology: ClusterTopology
    principal: PrincipalSpec
    schema_: List[DatabaseSchema] = Field(default_factory=list, alias="schema")
    connection: ConnectionSettings = ConnectionSettings()
    settings: BootstrapSettings = BootstrapSettings()

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @model_validator(mode="after")
    def _check_principal_targets(self) -> "BootstrapConfig":
        known = {g.id for g in self.topology.groups}
        unknown = [t for t in self.principal.targets if t not in known]
        if unknown:
            raise ValueError(f"principal targets reference unknown groups: {unknown}")
        return self

    @property
    def collections(self) -> List[CollectionSchema]:
        return [c for db in self.schema_ for c in db.collections]
