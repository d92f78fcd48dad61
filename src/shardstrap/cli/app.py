# src/shardstrap/cli/app.py
import signal
from contextlib import contextmanager
from enum import IntEnum
from pathlib import Path
from typing import Iterator, Optional

import typer

from shardstrap.admin.interface import ClusterAdmin
from shardstrap.admin.mongo import MongoClusterAdmin
from shardstrap.bootstrap.orchestrator import BootstrapOrchestrator
from shardstrap.config.loader import load_config
from shardstrap.config.models import BootstrapConfig, ConnectionSettings
from shardstrap.errors import (
    BarrierFailure,
    BootstrapError,
    Cancelled,
    ConfigurationInvalid,
)
from shardstrap.logging.log import default_log_dir, init_logging
from shardstrap.observers.console import ConsoleObserver
from shardstrap.observers.dispatcher import EventBus
from shardstrap.observers.events import new_ctx
from shardstrap.observers.jsonfile import JsonFileObserver
from shardstrap.observers.logger import LoggerObserver
from shardstrap.utils.cancellation import CancellationToken


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Bootstrap a sharded database cluster from cold nodes")


class ExitCode(IntEnum):
    OK = 0
    STEP_FAILED = 1
    BARRIER_FAILED = 3
    CONFIG_INVALID = 78     # sysexits EX_CONFIG
    CANCELLED = 130


def exit_code_for(exc: BaseException) -> ExitCode:
    if isinstance(exc, Cancelled):
        return ExitCode.CANCELLED
    if isinstance(exc, ConfigurationInvalid):
        return ExitCode.CONFIG_INVALID
    if isinstance(exc, BarrierFailure):
        return ExitCode.BARRIER_FAILED
    return ExitCode.STEP_FAILED


def make_admin(settings: ConnectionSettings) -> ClusterAdmin:
    return MongoClusterAdmin(settings)


def _load(config: Path) -> BootstrapConfig:
    try:
        return load_config(config)
    except ConfigurationInvalid as exc:
        typer.secho(f"Configuration invalid: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(ExitCode.CONFIG_INVALID)


@contextmanager
def _cancel_on_signals(token: CancellationToken) -> Iterator[None]:
    """Route SIGINT/SIGTERM to the cancellation token for the duration of a run."""
    def _handler(signum, _frame):
        token.cancel(f"received {signal.Signals(signum).name}")

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:
            # not on the main thread; the caller owns cancellation
            pass
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def bootstrap(
    config: Path = typer.Argument(..., help="Cluster definition YAML"),
    debug: bool = typer.Option(False, "--debug", help="DEBUG output on the console"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for run logs"),
    quiet: bool = typer.Option(False, "--quiet", help="No per-event console output"),
):
    """Converge the cluster described by CONFIG to a fully initialized topology."""
    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=debug)
    cfg = _load(config)

    typer.echo("")
    typer.secho("shardstrap bootstrap started", bold=True)
    typer.echo(f"  Cluster  : {cfg.name} ({cfg.environment})")
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    observers = [
        LoggerObserver(logger),
        JsonFileObserver((log_dir or default_log_dir()) / f"{run_id}.jsonl"),
    ]
    if not quiet:
        observers.insert(0, ConsoleObserver())
    bus = EventBus(observers, ctx=new_ctx(env=cfg.environment, cluster=cfg.name, run_id=run_id))

    token = CancellationToken()
    admin = make_admin(cfg.connection)
    orchestrator = BootstrapOrchestrator(cfg, admin, bus=bus, token=token)

    try:
        with _cancel_on_signals(token):
            state = orchestrator.run()
    except BootstrapError as exc:
        state = orchestrator.state
        code = exit_code_for(exc)
        attempts = state.attempts.get(state.failed_step, 0) if state.failed_step else 0
        typer.secho(
            f"\nBootstrap {state.phase.value.lower()} at step '{state.failed_step}' "
            f"after {attempts} attempt(s): {exc}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code)
    finally:
        admin.close()

    if state.balancer_settled is False:
        typer.secho("Balancer enabled but not yet running; it will start on its own.", fg=typer.colors.YELLOW)
    typer.secho(f"\nBootstrap complete: {state.phase.value}", fg=typer.colors.GREEN, bold=True)


@app.command()
def validate(config: Path = typer.Argument(..., help="Cluster definition YAML")):
    """Load and validate CONFIG without touching the cluster."""
    cfg = _load(config)
    topo = cfg.topology
    typer.echo(f"cluster      : {cfg.name} ({cfg.environment})")
    typer.echo(f"config group : {topo.config_group.id} ({len(topo.config_group.members)} members)")
    for shard in topo.shards:
        typer.echo(f"shard        : {shard.connection_string}")
    typer.echo(f"routers      : {topo.router_seed}")
    typer.echo(f"principal    : {cfg.principal.username}@{cfg.principal.database} role={cfg.principal.role}")
    for coll in cfg.collections:
        key = ", ".join(f"{k.field}: {k.direction}" for k in coll.shard_key)
        typer.echo(f"collection   : {coll.namespace} shard key {{{key}}}")
    typer.secho("configuration OK", fg=typer.colors.GREEN)


@app.command()
def status(config: Path = typer.Argument(..., help="Cluster definition YAML")):
    """Report the current state of every group, the routing table and the balancer."""
    cfg = _load(config)
    topo = cfg.topology
    admin = make_admin(cfg.connection)
    try:
        for group in topo.groups:
            try:
                st = admin.group_status(group.seed.host)
                members = ", ".join(f"{m.host}={m.state}" for m in st.members)
                typer.echo(f"{group.id:<12} primary={st.primary or '-'} [{members}]")
            except BootstrapError as exc:
                typer.echo(f"{group.id:<12} unavailable: {exc}")

        router = topo.router_seed
        try:
            shards = sorted(s.id for s in admin.list_shards(router))
            typer.echo(f"{'routing':<12} shards={shards}")
            bal = admin.balancer_status(router)
            typer.echo(f"{'balancer':<12} enabled={bal.enabled} running={bal.running}")
        except BootstrapError as exc:
            typer.echo(f"{'routing':<12} unavailable: {exc}")
    finally:
        admin.close()


if __name__ == "__main__":
    app()
