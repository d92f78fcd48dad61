# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/admin/mongo.py
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from shardstrap.config.models import (
    CollectionSchema,
    ConnectionSettings,
    IndexSpec,
    KeyField,
    PrincipalSpec,
    ReplicaGroupSpec,
)
from shardstrap.errors import (
    AlreadySatisfied,
    BootstrapError,
    ConflictingState,
    TransientStepError,
)
from .models import (
    BalancerStatus,
    GroupConfig,
    GroupStatus,
    MemberState,
    NodeRole,
    PrincipalRecord,
    ShardRecord,
)

log = logging.getLogger("shardstrap")

# Server error codes that mean "try again later".
TRANSIENT_CODES = frozenset({
    6,      # HostUnreachable
    7,      # HostNotFound
    74,     # NodeNotFound (initiate quorum check: peers not up yet)
    89,     # NetworkTimeout
    91,     # ShutdownInProgress
    94,     # NotYetInitialized
    133,    # FailedToSatisfyReadPreference (shard group without primary)
    189,    # PrimarySteppedDown
    262,    # ExceededTimeLimit
    10107,  # NotWritablePrimary
    11600,  # InterruptedAtShutdown
    11602,  # InterruptedDueToReplStateChange
    13435,  # NotPrimaryNoSecondaryOk
    13436,  # NotPrimaryOrSecondary
})

ALREADY_INITIALIZED = 23
NOT_YET_INITIALIZED = 94
NAMESPACE_EXISTS = 48
INDEX_CONFLICT_CODES = frozenset({85, 86})  # IndexOptionsConflict, IndexKeySpecsConflict
USER_EXISTS = 51003

MAJORITY = {"w": "majority", "wtimeout": 5000}


@contextmanager
def _translated(action: str, *, already: Tuple[int, ...] = ()) -> Iterator[None]:
    try:
        yield
    except ConnectionFailure as exc:
        raise TransientStepError(f"{action}: {exc}") from exc
    except OperationFailure as exc:
        if exc.code in already:
            raise AlreadySatisfied(f"{action}: {exc}") from exc
        if exc.code in TRANSIENT_CODES:
            raise TransientStepError(f"{action}: {exc}") from exc
        if exc.code in INDEX_CONFLICT_CODES:
            raise ConflictingState(f"{action}: {exc}") from exc
        raise BootstrapError(f"{action} failed (code={exc.code}): {exc}") from exc
    except PyMongoError as exc:
        raise BootstrapError(f"{action} failed: {exc}") from exc


def _key_doc(keys: List[KeyField]) -> Dict[str, Any]:
    return {k.field: k.direction for k in keys}


def _direction(value: Any) -> Any:
    # the server may report 1.0 for an ascending key
    return value if isinstance(value, str) else int(value)


class MongoClusterAdmin:
    """
    ClusterAdmin backed by pymongo.

    One client per address: direct connections for single members (a
    member that is not yet part of a replica set cannot be discovered
    through a seed list), seed-list connections for the routing tier.
    """

    def __init__(self, settings: Optional[ConnectionSettings] = None, *, appname: str = "shardstrap"):
        self.settings = settings or ConnectionSettings()
        self.appname = appname
        self._clients: Dict[str, MongoClient] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def _client(self, address: str) -> MongoClient:
        with self._lock:
            client = self._clients.get(address)
            if client is not None:
                return client

            s = self.settings
            hosts = [h.strip() for h in address.split(",") if h.strip()]
            kwargs: Dict[str, Any] = {
                "appname": self.appname,
                "connectTimeoutMS": s.connect_timeout_ms,
                "serverSelectionTimeoutMS": s.server_selection_timeout_ms,
                "tls": s.tls,
            }
            if len(hosts) == 1:
                kwargs["directConnection"] = True
            if s.tls_ca_file:
                kwargs["tlsCAFile"] = s.tls_ca_file
            if s.username:
                kwargs["username"] = s.username
                kwargs["password"] = s.password.get_secret_value() if s.password else None
                kwargs["authSource"] = s.auth_source

            log.debug("opening client for %s", address)
            client = MongoClient(hosts, **kwargs)
            self._clients[address] = client
            return client

    def _admin_command(self, address: str, *args: Any, **kwargs: Any) -> Dict[str, Any]:
        return self._client(address).admin.command(*args, **kwargs)

    # ------------------------------------------------------------------
    # Replica groups
    # ------------------------------------------------------------------
    def initiate_group(self, host: str, group: ReplicaGroupSpec) -> None:
        config: Dict[str, Any] = {
            "_id": group.id,
            "members": [
                {
                    "_id": m.id,
                    "host": m.host,
                    "priority": 0 if m.arbiter_only else m.priority,
                    "votes": m.votes,
                    "arbiterOnly": m.arbiter_only,
                    "hidden": m.hidden,
                }
                for m in group.members
            ],
        }
        if group.config_role:
            config["configsvr"] = True

        with _translated(f"replSetInitiate {group.id} via {host}", already=(ALREADY_INITIALIZED,)):
            self._admin_command(host, "replSetInitiate", config)

    def group_config(self, host: str) -> Optional[GroupConfig]:
        try:
            with _translated(f"replSetGetConfig on {host}", already=(NOT_YET_INITIALIZED,)):
                reply = self._admin_command(host, "replSetGetConfig")
        except AlreadySatisfied:
            return None
        cfg = reply["config"]
        return GroupConfig(
            group_id=cfg["_id"],
            hosts=[m["host"] for m in cfg.get("members", [])],
            config_role=bool(cfg.get("configsvr", False)),
        )

    def group_status(self, host: str) -> GroupStatus:
        with _translated(f"replSetGetStatus on {host}"):
            reply = self._admin_command(host, "replSetGetStatus")
        members = [
            MemberState(
                host=m["name"],
                state=m.get("stateStr", "UNKNOWN"),
                healthy=bool(m.get("health", 1)),
            )
            for m in reply.get("members", [])
        ]
        return GroupStatus.from_members(members)

    def hello(self, host: str) -> NodeRole:
        with _translated(f"hello on {host}"):
            reply = self._admin_command(host, "hello")
        return NodeRole(
            host=host,
            is_primary=bool(reply.get("isWritablePrimary", reply.get("ismaster", False))),
            group_id=reply.get("setName"),
            primary=reply.get("primary"),
        )

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------
    def get_principal(self, host: str, database: str, username: str) -> Optional[PrincipalRecord]:
        with _translated(f"usersInfo {username}@{database} on {host}"):
            reply = self._client(host)[database].command(
                "usersInfo", {"user": username, "db": database}
            )
        users = reply.get("users", [])
        if not users:
            return None
        u = users[0]
        return PrincipalRecord(
            username=u["user"],
            database=u["db"],
            roles=[(r["role"], r["db"]) for r in u.get("roles", [])],
        )

    def create_principal(self, host: str, spec: PrincipalSpec) -> None:
        with _translated(f"createUser {spec.username}@{spec.database} on {host}", already=(USER_EXISTS,)):
            self._client(host)[spec.database].command(
                "createUser",
                spec.username,
                pwd=spec.secret.get_secret_value(),
                roles=[{"role": spec.role, "db": spec.grant_database}],
                writeConcern=MAJORITY,
            )

    # ------------------------------------------------------------------
    # Routing tier
    # ------------------------------------------------------------------
    def add_shard(self, router: str, group: ReplicaGroupSpec) -> None:
        with _translated(f"addShard {group.id}"):
            self._admin_command(router, "addShard", group.connection_string, name=group.id)

    def list_shards(self, router: str) -> List[ShardRecord]:
        with _translated("listShards"):
            reply = self._admin_command(router, "listShards")
        return [ShardRecord(id=s["_id"], host=s.get("host", "")) for s in reply.get("shards", [])]

    # ------------------------------------------------------------------
    # Schema and partitioning
    # ------------------------------------------------------------------
    def list_collections(self, router: str, database: str) -> Dict[str, Optional[Dict[str, Any]]]:
        with _translated(f"listCollections {database}"):
            docs = list(self._client(router)[database].list_collections())
        return {d["name"]: d.get("options", {}).get("validator") for d in docs}

    def create_collection(self, router: str, collection: CollectionSchema, validator: Dict[str, Any]) -> None:
        with _translated(f"create {collection.namespace}", already=(NAMESPACE_EXISTS,)):
            self._client(router)[collection.database].command(
                "create", collection.name, validator=validator
            )

    def list_indexes(self, router: str, collection: CollectionSchema) -> List[Tuple[Tuple[str, Any], ...]]:
        with _translated(f"listIndexes {collection.namespace}"):
            coll = self._client(router)[collection.database][collection.name]
            return [
                tuple((f, _direction(d)) for f, d in ix["key"].items())
                for ix in coll.list_indexes()
            ]

    def create_index(self, router: str, collection: CollectionSchema, index: IndexSpec) -> None:
        kwargs: Dict[str, Any] = {"unique": index.unique}
        if index.name:
            kwargs["name"] = index.name
        with _translated(f"createIndex {collection.namespace} {index.shape}"):
            coll = self._client(router)[collection.database][collection.name]
            coll.create_index([(k.field, k.direction) for k in index.keys], **kwargs)

    def enable_sharding(self, router: str, database: str) -> None:
        with _translated(f"enableSharding {database}"):
            self._admin_command(router, "enableSharding", database)

    def shard_key(self, router: str, collection: CollectionSchema) -> Optional[List[KeyField]]:
        with _translated(f"read shard key {collection.namespace}"):
            doc = self._client(router).config.collections.find_one({"_id": collection.namespace})
        if not doc or doc.get("dropped"):
            return None
        return [KeyField(field=f, direction=_direction(d)) for f, d in doc["key"].items()]

    def shard_collection(self, router: str, collection: CollectionSchema) -> None:
        with _translated(f"shardCollection {collection.namespace}"):
            self._admin_command(
                router,
                "shardCollection",
                collection.namespace,
                key=_key_doc(collection.shard_key),
            )

    # ------------------------------------------------------------------
    # Balancer
    # ------------------------------------------------------------------
    def balancer_start(self, router: str) -> None:
        with _translated("balancerStart"):
            self._admin_command(router, "balancerStart")

    def balancer_status(self, router: str) -> BalancerStatus:
        """
        ``enabled`` is ``mode == "full"``. ``running`` is ``inBalancerRound``,
        which is true only while a balancing round is in progress. A fresh
        cluster with nothing to migrate is usually between rounds, so
        BalancerController.wait_until_active will often time out and emit
        BalancerNotSettled; set force_balancer_round to shorten the gap.
        """
        with _translated("balancerStatus"):
            reply = self._admin_command(router, "balancerStatus")
        return BalancerStatus(
            enabled=reply.get("mode") == "full",
            running=bool(reply.get("inBalancerRound", False)),
        )

    def balancer_force_round(self, router: str) -> None:
        # balancerStart on an enabled balancer wakes the balancer thread for an immediate round
        with _translated("balancerStart (force round)"):
            self._admin_command(router, "balancerStart")

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()
