"""Command line entry point: forward, reverse, or keep forwarding in sync as a daemon."""

from __future__ import annotations

import logging
import signal
from dataclasses import dataclass
from typing import NoReturn, Optional, Tuple

import typer
from docker.errors import DockerException

from dockerfwd.config import ForwardingConfig, load_yaml_config, parse_port_list
from dockerfwd.engine import ForwardingEngine
from dockerfwd.errors import ForwardingError, PartialFailureError
from dockerfwd.iptables import open_backends
from dockerfwd.settings import Settings
from dockerfwd.watcher import LifecycleWatcher
from dockerfwd.workloads import DockerWorkloads

app = typer.Typer(
    name="dockerfwd",
    help="Forward host ports to Docker containers with iptables NAT rules",
    add_completion=False,
)


@dataclass
class Options:
    settings: Settings
    container: Optional[str] = None
    ports: Optional[str] = None


def fail(message: str) -> NoReturn:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def load_config(options: Options) -> ForwardingConfig:
    if options.container or options.ports:
        if not options.container:
            raise ForwardingError("Container must be provided if ports are provided")
        if not options.ports:
            raise ForwardingError("Ports must be provided if container is provided")
        config = parse_port_list(options.container, options.ports)
    else:
        config = load_yaml_config(options.settings.config_file)
    config.validate()
    return config


def build_engine(options: Options) -> Tuple[ForwardingEngine, DockerWorkloads]:
    try:
        config = load_config(options)
        backends = open_backends(options.settings)
        workloads = DockerWorkloads()
    except ForwardingError as e:
        fail(str(e))
    except DockerException as e:
        fail(f"Unable to connect to Docker: {e}")
    engine = ForwardingEngine(config, workloads, backends, loopback=options.settings.enable_loopback)
    return engine, workloads


@app.callback()
def cli(
    ctx: typer.Context,
    config_file: Optional[str] = typer.Option(None, "--config", "-c",
                                              help="Port forwarding config file in YAML format"),
    container: Optional[str] = typer.Option(None, "--container",
                                            help="Container to forward ports to; requires --ports"),
    ports: Optional[str] = typer.Option(None, "--ports",
                                        help="protocol://HostPort1:ContainerPort1,HostPort2:ContainerPort2; "
                                             "requires --container"),
    loopback: Optional[bool] = typer.Option(None, "--loopback/--no-loopback",
                                            help="Also forward connections made from the host itself"),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run",
                                           help="Only log the iptables commands that would change rules"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
):
    settings = Settings.from_env()
    if config_file is not None:
        settings.config_file = config_file
    if loopback is not None:
        settings.enable_loopback = loopback
    if dry_run is not None:
        settings.dry_run = dry_run
    if log_level is not None:
        settings.log_level = log_level.upper()

    logging.basicConfig(level=settings.log_level,
                        format="%(asctime)s - %(levelname)s - %(message)s")
    ctx.obj = Options(settings=settings, container=container, ports=ports)


@app.command()
def forward(ctx: typer.Context):
    """Enable port forwarding for every configured container."""
    engine, _ = build_engine(ctx.obj)
    try:
        engine.forward_all()
    except PartialFailureError as e:
        fail(str(e))


@app.command()
def reverse(ctx: typer.Context):
    """Remove port forwarding for every configured container."""
    engine, _ = build_engine(ctx.obj)
    try:
        engine.reverse_all()
    except PartialFailureError as e:
        fail(str(e))


@app.command()
def daemon(ctx: typer.Context):
    """Forward all containers, then follow Docker start/stop events."""
    settings = ctx.obj.settings
    engine, workloads = build_engine(ctx.obj)
    watcher = LifecycleWatcher(engine, workloads, backoff=settings.event_backoff)

    try:
        engine.forward_all()
    except PartialFailureError as e:
        logging.error(f"Error with initial forwarding of ports: {e}")

    def shutdown(signum, frame):
        logging.info("Shutting down...")
        watcher.stop()
        if settings.clean_on_exit:
            try:
                engine.reverse_all()
            except PartialFailureError as e:
                logging.error(f"Error removing port forwarding on exit: {e}")
        raise SystemExit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    watcher.run()


def main():
    app()


if __name__ == "__main__":
    main()
