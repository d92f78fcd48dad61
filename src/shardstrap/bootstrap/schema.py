# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/bootstrap/schema.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from shardstrap.admin.interface import ClusterAdmin
from shardstrap.config.models import CollectionSchema, DatabaseSchema, FieldType, IndexSpec
from shardstrap.errors import AlreadySatisfied, ConflictingState
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import CollectionEnsured, CollectionSharded, IndexEnsured

log = logging.getLogger("shardstrap")

Shape = Tuple[Tuple[str, Any], ...]


def _field_schema(ft: FieldType) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if ft.bson_type:
        out["bsonType"] = ft.bson_type
    if ft.enum is not None:
        out["enum"] = list(ft.enum)
    if ft.items is not None:
        out.setdefault("bsonType", "array")
        out["items"] = _field_schema(ft.items)
    return out


def build_validator(collection: CollectionSchema) -> Dict[str, Any]:
    """Render the $jsonSchema validator for a collection."""
    schema: Dict[str, Any] = {"bsonType": "object"}
    if collection.required:
        schema["required"] = list(collection.required)
    if collection.properties:
        schema["properties"] = {
            name: _field_schema(ft) for name, ft in collection.properties.items()
        }
    return {"$jsonSchema": schema}


def _fmt(shape: Iterable[Tuple[str, Any]]) -> str:
    return "{" + ", ".join(f"{f}: {d}" for f, d in shape) + "}"


def _has_prefix(shape: Shape, prefix: Shape) -> bool:
    return len(shape) >= len(prefix) and tuple(shape[: len(prefix)]) == tuple(prefix)


class SchemaInitializer:
    """
    Declares collections, their indexes and sharding rules through the
    routing tier.

    Per collection the order is fixed: collection, indexes, shard key.
    The routing tier refuses a shard key without a supporting index.
    """

    def __init__(self, admin: ClusterAdmin, router: str, *, bus: Optional[EventBus] = None):
        self.admin = admin
        self.router = router
        self.bus = bus or EventBus()
        self._sharded_dbs: Set[str] = set()

    # ------------------------------------------------------------------
    def _ensure_collection(self, coll: CollectionSchema) -> None:
        validator = build_validator(coll)
        existing = self.admin.list_collections(self.router, coll.database)

        if coll.name not in existing:
            try:
                self.admin.create_collection(self.router, coll, validator)
                log.info("[schema] created %s", coll.namespace)
                self.bus.publish(CollectionEnsured, namespace=coll.namespace, created=True)
                return
            except AlreadySatisfied:
                existing = self.admin.list_collections(self.router, coll.database)

        current = existing.get(coll.name)
        if current != validator:
            raise ConflictingState(
                f"{coll.namespace} exists with a different validator: {current!r}"
            )
        log.info("[schema] %s already present", coll.namespace)
        self.bus.publish(CollectionEnsured, namespace=coll.namespace, created=False)

    def _ensure_indexes(self, coll: CollectionSchema) -> None:
        shapes = set(self.admin.list_indexes(self.router, coll))

        wanted = list(coll.indexes)
        key_shape = coll.shard_key_index.shape
        if not any(_has_prefix(ix.shape, key_shape) for ix in wanted):
            wanted.append(coll.shard_key_index)

        for index in wanted:
            if index.shape in shapes:
                self.bus.publish(IndexEnsured, namespace=coll.namespace, keys=_fmt(index.shape), created=False)
                continue
            self.admin.create_index(self.router, coll, index)
            shapes.add(index.shape)
            log.info("[schema] index %s on %s", _fmt(index.shape), coll.namespace)
            self.bus.publish(IndexEnsured, namespace=coll.namespace, keys=_fmt(index.shape), created=True)

    def _ensure_database(self, database: str) -> None:
        if database in self._sharded_dbs:
            return
        try:
            self.admin.enable_sharding(self.router, database)
        except AlreadySatisfied:
            pass
        self._sharded_dbs.add(database)

    def _ensure_shard_key(self, coll: CollectionSchema) -> None:
        wanted = IndexSpec(keys=list(coll.shard_key)).shape
        current = self.admin.shard_key(self.router, coll)
        if current is not None:
            current_shape = IndexSpec(keys=current).shape
            if current_shape != wanted:
                raise ConflictingState(
                    f"{coll.namespace} is already sharded on {_fmt(current_shape)}, declared {_fmt(wanted)}"
                )
            self.bus.publish(CollectionSharded, namespace=coll.namespace, key=_fmt(wanted), applied=False)
            return

        try:
            self.admin.shard_collection(self.router, coll)
        except AlreadySatisfied:
            self.bus.publish(CollectionSharded, namespace=coll.namespace, key=_fmt(wanted), applied=False)
            return
        log.info("[schema] sharded %s on %s", coll.namespace, _fmt(wanted))
        self.bus.publish(CollectionSharded, namespace=coll.namespace, key=_fmt(wanted), applied=True)

    # ------------------------------------------------------------------
    def apply_schema(self, database: str, collection: CollectionSchema) -> None:
        if collection.database != database:
            collection = collection.model_copy(update={"database": database})

        self._ensure_collection(collection)
        self._ensure_indexes(collection)
        self._ensure_database(database)
        self._ensure_shard_key(collection)

    def apply_database(self, db: DatabaseSchema) -> None:
        self._ensure_database(db.name)
        for coll in db.collections:
            self.apply_schema(db.name, coll)
