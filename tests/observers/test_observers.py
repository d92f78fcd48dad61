import json
import logging

from shardstrap.observers.console import ConsoleObserver
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import (
    BootstrapSummary,
    PhaseReached,
    StepFailed,
    new_ctx,
)
from shardstrap.observers.jsonfile import JsonFileObserver
from shardstrap.observers.logger import LoggerObserver

from fakes import Capture


class Boom:
    def notify(self, event):
        raise RuntimeError("observer bug")


def test_publish_stamps_context_and_preserves_order():
    cap = Capture()
    bus = EventBus([cap], ctx=new_ctx(env="prod", cluster="c1", run_id="run-1"))

    bus.publish(PhaseReached, phase="ConfigGroupReady")
    bus.publish(PhaseReached, phase="ShardGroupsReady")

    assert [e.phase for e in cap.events] == ["ConfigGroupReady", "ShardGroupsReady"]
    assert all(e.run_id == "run-1" and e.env == "prod" and e.cluster == "c1" for e in cap.events)
    assert bus.run_id == "run-1"


def test_failing_observer_does_not_stop_delivery():
    cap = Capture()
    bus = EventBus([Boom(), cap])
    bus.publish(PhaseReached, phase="Done")
    assert cap.names() == ["PhaseReached"]


def test_json_file_observer_writes_jsonl(tmp_path):
    path = tmp_path / "events" / "run.jsonl"
    bus = EventBus([JsonFileObserver(path)], ctx=new_ctx(env="dev", cluster="c1", run_id="r"))

    bus.publish(PhaseReached, phase="Init")
    bus.publish(StepFailed, step="config-group", attempts=30, error="unreachable")

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [rec["type"] for rec in lines] == ["PhaseReached", "StepFailed"]
    assert lines[1]["attempts"] == 30 and lines[1]["run_id"] == "r"


def test_logger_observer_levels(caplog):
    logger = logging.getLogger("shardstrap.test")
    bus = EventBus([LoggerObserver(logger)])

    with caplog.at_level(logging.DEBUG, logger="shardstrap.test"):
        bus.publish(PhaseReached, phase="Done")
        bus.publish(StepFailed, step="balancer", attempts=1, error="x")
        bus.publish(BootstrapSummary, status="FAILED", phase="SchemaApplied", failed_step="balancer")

    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.INFO, logging.ERROR, logging.ERROR]
    assert "[EVENT] StepFailed" in caplog.records[1].getMessage()


def test_console_observer_prints_event(capsys):
    ConsoleObserver().notify(PhaseReached(**new_ctx(env="dev", cluster="c1"), phase="Done"))
    out = capsys.readouterr().out
    assert "PhaseReached phase=Done" in out
