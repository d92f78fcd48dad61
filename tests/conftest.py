from __future__ import annotations

import logging
from typing import Any

import pytest

from shardstrap.config.models import BootstrapConfig
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import new_ctx

from fakes import Capture, FakeCluster, config_dict


@pytest.fixture
def make_config():
    def _make(**settings: Any) -> BootstrapConfig:
        return BootstrapConfig.model_validate(config_dict(**settings))
    return _make


@pytest.fixture
def config(make_config) -> BootstrapConfig:
    return make_config()


@pytest.fixture
def fake() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def capture() -> Capture:
    return Capture()


@pytest.fixture
def bus(capture) -> EventBus:
    return EventBus([capture], ctx=new_ctx(env="dev", cluster="test-cluster"))


@pytest.fixture(autouse=True)
def _restore_shardstrap_logger():
    logger = logging.getLogger("shardstrap")
    saved = (list(logger.handlers), logger.propagate, logger.level)
    yield
    for h in logger.handlers:
        if h not in saved[0]:
            h.close()
    logger.handlers[:] = saved[0]
    logger.propagate = saved[1]
    logger.setLevel(saved[2])
