from shardstrap.bootstrap.balancer import BalancerController
from shardstrap.observers.events import BalancerActive, BalancerNotSettled


def _controller(fake, bus, **kw):
    kw.setdefault("wait_seconds", 0.2)
    kw.setdefault("poll_seconds", 0.01)
    return BalancerController(fake, "router1:27017", bus=bus, **kw)


def test_enable_then_settle(fake, bus, capture):
    fake.balancer_after = 3
    ctl = _controller(fake, bus)

    ctl.enable()
    assert ctl.wait_until_active() is True

    assert fake.balancer_enabled and fake.balancer_running
    assert len(capture.of(BalancerActive)) == 1


def test_enable_is_skipped_when_already_enabled(fake, bus):
    fake.balancer_enabled = True
    _controller(fake, bus).enable()
    assert fake.count("balancer_start") == 0


def test_not_running_within_window_is_a_warning(fake, bus, capture, caplog):
    fake.balancer_after = 10_000
    ctl = _controller(fake, bus, wait_seconds=0.05)
    ctl.enable()

    with caplog.at_level("WARNING", logger="shardstrap"):
        assert ctl.wait_until_active() is False

    ev = capture.of(BalancerNotSettled)[0]
    assert ev.enabled is True and ev.running is False
    assert "not settled" in caplog.text


def test_force_round(fake, bus):
    _controller(fake, bus).force_round()
    assert fake.forced_rounds == 1
