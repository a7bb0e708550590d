"""
portsync command line.

Usage:
    portsync monitor            # on the remote host; events go to stdout
    portsync forward TARGET     # locally; forwards every port TARGET binds
    portsync cleanup            # stop tunnels left behind by a crashed session
"""

import os
import shlex
import sys
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from .common.config import (
    DEFAULT_STATE_DIR,
    DEFAULT_TOKEN_SERVICE_PORT,
    ForwarderConfig,
    MonitorConfig,
)
from .common.exceptions import ConfigurationError, RecordStoreError, SetupError
from .common.logging import get_logger, setup_logging
from .forward.reconciler import ForwardingReconciler
from .forward.records import RecordStore
from .forward.session import EXIT_SETUP_FAILURE, ForwardingSession
from .forward.supervisor import TunnelSupervisor
from .monitor.emitter import EventEmitter
from .monitor.sampler import get_sampler
from .monitor.service import PortMonitor

logger = get_logger(__name__)

app = typer.Typer(
    name="portsync",
    help="Forward every TCP port a remote host listens on to the same local port",
    no_args_is_help=True,
)

DEFAULT_RECORD_STORE = DEFAULT_STATE_DIR / "forwarded-ports"


@app.command()
def monitor(
    sample_interval: Annotated[
        float,
        typer.Option("--sample-interval", help="Seconds between continuous passes"),
    ] = 2.0,
    reconcile_interval: Annotated[
        float,
        typer.Option(
            "--reconcile-interval", help="Seconds between full reconciliation passes"
        ),
    ] = 5.0,
    log_level: Annotated[
        str, typer.Option("--log-level", help="Log level for stderr diagnostics")
    ] = "WARNING",
):
    """
    Watch listening sockets and write bound/unbound events to stdout.

    Runs on the remote host; its stdout is the event stream read by
    `portsync forward`.
    """
    setup_logging(level=log_level, stream=sys.stderr)

    try:
        config = MonitorConfig(
            sample_interval=sample_interval, reconcile_interval=reconcile_interval
        )
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(1)

    emitter = EventEmitter(sys.stdout)
    try:
        sampler = get_sampler(on_error=emitter.emit_error, timeout=config.command_timeout)
    except ConfigurationError as e:
        emitter.emit_error(f"Failed to start port monitoring: {e}")
        raise typer.Exit(1)

    service = PortMonitor(sampler, emitter, config)
    service.install_signal_handlers()
    code = service.run()

    if service.stream_closed:
        # Keep the interpreter's final flush from raising on the dead pipe
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    raise typer.Exit(code)


@app.command()
def forward(
    target: Annotated[str, typer.Argument(help="Secure-shell destination")],
    channel: Annotated[
        Path | None,
        typer.Option(
            "--channel",
            "-c",
            help="Read events from this path (e.g. a FIFO) instead of spawning a monitor",
            envvar="PORTSYNC_CHANNEL",
        ),
    ] = None,
    monitor_command: Annotated[
        str | None,
        typer.Option(
            "--monitor-command",
            help="Command whose stdout is the event stream "
            "(default: ssh TARGET portsync monitor)",
        ),
    ] = None,
    record_store: Annotated[
        Path,
        typer.Option(
            "--record-store", help="Record of active tunnels", envvar="PORTSYNC_RECORD_STORE"
        ),
    ] = DEFAULT_RECORD_STORE,
    helper: Annotated[
        list[str] | None,
        typer.Option("--helper", help="Helper command to run for the session"),
    ] = None,
    token_port: Annotated[
        int,
        typer.Option("--token-port", help="Local credential helper port (never forwarded)"),
    ] = DEFAULT_TOKEN_SERVICE_PORT,
    reserved_port: Annotated[
        list[int] | None,
        typer.Option("--reserved-port", help="Additional port that is never forwarded"),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Write the forwarding log here", envvar="PORTSYNC_LOG_FILE"),
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level")] = "INFO",
    json_logs: Annotated[bool, typer.Option("--json-logs")] = False,
    quiet: Annotated[
        bool, typer.Option("--quiet", "-q", help="No console logging")
    ] = False,
):
    """
    Forward each port TARGET starts listening on to the same local port.

    Exits 0 when the event source closes, 130 on SIGINT, 143 on SIGTERM
    and 1 when setup fails.
    """
    setup_logging(
        level=log_level,
        json_format=json_logs,
        log_file=str(log_file) if log_file else None,
        console=not quiet,
    )

    try:
        config = ForwarderConfig(
            target=target,
            record_store=record_store,
            channel=channel,
            monitor_command=shlex.split(monitor_command) if monitor_command else None,
            helper_commands=[shlex.split(command) for command in helper or []],
            reserved_ports={token_port, *(reserved_port or [])},
        )
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(EXIT_SETUP_FAILURE)

    session = ForwardingSession(config)
    session.install_signal_handlers()
    try:
        code = session.run()
    except SetupError as e:
        logger.error("Session setup failed", error=str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_SETUP_FAILURE)
    raise typer.Exit(code)


@app.command()
def cleanup(
    record_store: Annotated[
        Path,
        typer.Option(
            "--record-store", help="Record of active tunnels", envvar="PORTSYNC_RECORD_STORE"
        ),
    ] = DEFAULT_RECORD_STORE,
    stop_timeout: Annotated[
        float, typer.Option("--stop-timeout", help="Seconds to wait per tunnel")
    ] = 5.0,
    log_level: Annotated[str, typer.Option("--log-level")] = "INFO",
):
    """
    Stop every tunnel in the record store and delete the store.

    Use after a forwarding session exited abnormally.
    """
    setup_logging(level=log_level)

    store = RecordStore(record_store)
    try:
        records = store.load()
    except RecordStoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if not records:
        store.delete()
        typer.echo("No recorded tunnels.")
        return

    # Stopping tunnels never uses the target
    config = ForwarderConfig(
        target="localhost", record_store=record_store, stop_timeout=stop_timeout
    )
    reconciler = ForwardingReconciler(store, TunnelSupervisor(config))
    failed = reconciler.stop_all()
    if failed:
        ports = ", ".join(str(port) for port in failed)
        typer.echo(f"Tunnels still running on ports: {ports}", err=True)
        raise typer.Exit(1)

    store.delete()
    typer.echo(f"Stopped {len(records)} recorded tunnel(s).")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
