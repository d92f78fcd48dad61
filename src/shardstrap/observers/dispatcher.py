# src/shardstrap/observers/dispatcher.py
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Type

from .events import BaseEvent, new_ctx, stamp

log = logging.getLogger("shardstrap")


class EventBus:
    """
    Fan events out to observers in emission order.

    Shard tasks emit from worker threads, so delivery is serialized.
    """

    def __init__(self, observers: List = None, ctx: Optional[Dict[str, Any]] = None):
        self._observers = observers or []
        self._lock = threading.Lock()
        self.ctx = ctx or new_ctx(env="dev", cluster=None)

    @property
    def run_id(self) -> str:
        return self.ctx["run_id"]

    def emit(self, event: BaseEvent) -> None:
        with self._lock:
            for ob in self._observers:
                try:
                    ob.notify(event)
                except Exception as exc:
                    # observers must not break a bootstrap run
                    log.debug("observer %r failed on %s: %s", ob, type(event).__name__, exc)

    def publish(self, event_cls: Type[BaseEvent], **fields: Any) -> None:
        self.emit(event_cls(**stamp(self.ctx), **fields))
