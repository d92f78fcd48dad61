from __future__ import annotations
import logging
from .events import BaseEvent

# events that indicate degraded progress
_LEVELS = {
    "StepAttemptFailed": logging.WARNING,
    "PrimaryWaitTimedOut": logging.WARNING,
    "BalancerNotSettled": logging.WARNING,
    "StepFailed": logging.ERROR,
}


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "env", "cluster"))
        if etype == "BootstrapSummary" and d.get("status") != "DONE":
            level = logging.ERROR
        else:
            level = _LEVELS.get(etype, logging.INFO)

        self.logger.log(level, "[EVENT] %s: %s", etype, msg)
