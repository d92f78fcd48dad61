# src/shardstrap/observers/console.py
import typer

from .events import BaseEvent

_WARN = {"StepAttemptFailed", "BalancerNotSettled", "PrimaryWaitTimedOut"}
_FAIL = {"StepFailed"}


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in ("ts", "run_id", "env", "cluster"))
        color = typer.colors.RED if k in _FAIL else typer.colors.YELLOW if k in _WARN else None
        typer.secho(f"[{d['ts']}] {k} {data}", fg=color)
