"""
Command-line interface for enginectl.

One-shot commands print the current state of a resource kind and exit;
with --watch they subscribe to the reconciler and redraw whenever the
store changes, until interrupted. Lifecycle commands go through the action
dispatcher and exit non-zero when the engine refuses.
"""

import logging
import time
from logging.handlers import RotatingFileHandler
from typing import Callable, List, Optional

import click
from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from . import __version__, get_log_path
from .actions import ActionDispatcher
from .backend import ResourceClient
from .config import AppConfig, ConfigManager, config_manager
from .errors import EngineControlError
from .model import (
    CONTAINERS, IMAGES, NETWORKS, VOLUMES, STDERR,
    EngineStatus, LogLine, ResourceSnapshot,
)
from .reconcile import Reconciler
from .state import StateManager
from .transport import Transport

console = Console()
logger = logging.getLogger(__name__)

WATCH_IDLE = 0.5


def setup_logging(manager: ConfigManager) -> None:
    """Send all package logging to the rotating log file; never to the terminal."""
    settings = manager.get_config().logging
    handler = RotatingFileHandler(
        manager.get_custom_log_path() or get_log_path(),
        maxBytes=settings.max_size_mb * 1024 * 1024,
        backupCount=settings.backup_count,
    )
    logging.basicConfig(
        handlers=[handler],
        level=getattr(logging, manager.get_log_level(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


class Session:
    """Wires transport, client, reconciler and dispatcher for one invocation."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.transport = Transport(
            config.engine.endpoint,
            api_version=config.engine.api_version,
            timeout=config.engine.timeout,
        )
        self.client = ResourceClient(self.transport)
        self.reconciler = Reconciler(self.client, config=config)
        self.dispatcher = ActionDispatcher(self.client, self.reconciler, config=config)

    def close(self) -> None:
        self.reconciler.stop_all()
        self.transport.close()


# --- rendering ---

def _error_caption(error: Optional[Exception]) -> Optional[str]:
    if error is None:
        return None
    return f"[red]{error}[/red] (showing last known state)"


def render_snapshot(snapshot: ResourceSnapshot, error: Optional[Exception] = None) -> Table:
    """Render a snapshot of any kind as a table."""
    table = Table(title=snapshot.kind.capitalize(), caption=_error_caption(error))

    if snapshot.kind == CONTAINERS:
        for column in ("ID", "Name", "Image", "State", "Status"):
            table.add_column(column)
        for c in snapshot.records:
            style = "green" if c.is_running else "dim"
            table.add_row(c.short_id, c.name, c.image, Text(c.state, style=style), c.status)
    elif snapshot.kind == IMAGES:
        for column in ("ID", "Tags", "Size"):
            table.add_column(column)
        for img in snapshot.records:
            table.add_row(img.short_id, ", ".join(img.repo_tags) or "<none>", f"{img.size_mb:.1f} MB")
    elif snapshot.kind == NETWORKS:
        for column in ("ID", "Name", "Driver", "Scope"):
            table.add_column(column)
        for net in snapshot.records:
            name = f"{net.name} (builtin)" if net.builtin else net.name
            table.add_row(net.id[:12], name, net.driver, net.scope)
    elif snapshot.kind == VOLUMES:
        for column in ("Name", "Driver", "Mountpoint"):
            table.add_column(column)
        for vol in snapshot.records:
            table.add_row(vol.name, vol.driver, vol.mountpoint)
    return table


def render_engine(status: EngineStatus) -> Table:
    table = Table(title="Engine", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    state = Text("online", style="green") if status.online else Text("offline", style="red")
    table.add_row("State", state)
    table.add_row("Version", status.version or "-")
    table.add_row("API version", status.api_version or "-")
    table.add_row("OS/Arch", f"{status.os or '-'}/{status.arch or '-'}")
    table.add_row("Kernel", status.kernel_version or "-")
    table.add_row("Containers", f"{status.containers} ({status.containers_running} running, "
                                f"{status.containers_stopped} stopped)")
    table.add_row("Images", str(status.images))
    table.add_row("CPUs", str(status.ncpu))
    table.add_row("Memory", f"{status.mem_total / (1024 ** 3):.1f} GB")
    if status.error:
        table.add_row("Error", Text(status.error, style="red"))
    return table


def render_logs(lines: List[LogLine]) -> Text:
    text = Text()
    for line in lines:
        text.append(line.text + "\n", style="red" if line.stream == STDERR else None)
    return text


def _watch(subscription, state: Optional[StateManager] = None,
           redraw: Optional[Callable[[], None]] = None) -> None:
    """
    Idle until interrupted, then close subscription.

    With a state store, redraw() runs on this thread whenever the store
    version moves, so rendering never happens on a poll thread.
    """
    last_version = None
    try:
        while True:
            if state is not None:
                version = state.get_version()
                if version != last_version:
                    last_version = version
                    redraw()
            time.sleep(WATCH_IDLE)
    except KeyboardInterrupt:
        pass
    finally:
        subscription.close()


def _finish(ctx: click.Context, result) -> None:
    if result.ok:
        console.print(f"[green]{result.message}[/green]")
    else:
        console.print(f"[red]{result.message}[/red]")
        ctx.exit(1)


# --- commands ---

@click.group()
@click.version_option(version=__version__)
@click.option("--endpoint", "-H", default=None, help="Engine endpoint (default: from config)")
@click.pass_context
def main(ctx: click.Context, endpoint: Optional[str]) -> None:
    """Control a remote container engine."""
    config = config_manager.get_config()
    if endpoint:
        config.engine.endpoint = endpoint
    setup_logging(config_manager)
    logger.info(f"enginectl {__version__} against {config_manager.get_endpoint()}")
    session = Session(config)
    ctx.obj = session
    ctx.call_on_close(session.close)


def _list_command(kind: str, help_text: str):
    @click.option("--watch", "-w", is_flag=True, help="Keep reconciling and redraw on change")
    @click.pass_obj
    def command(session: Session, watch: bool) -> None:
        reconciler = session.reconciler
        if not watch:
            reconciler.refresh(kind)
            console.print(render_snapshot(reconciler.snapshot(kind), reconciler.state.get_error(kind)))
            return
        state = reconciler.state
        with Live(render_snapshot(reconciler.snapshot(kind)), console=console) as live:
            subscription = reconciler.subscribe(kind, lambda snapshot, error: None)
            _watch(subscription, state, lambda: live.update(
                render_snapshot(state.get_snapshot(kind), state.get_error(kind))
            ))

    command.__doc__ = help_text
    return main.command(name={CONTAINERS: "ps"}.get(kind, kind))(command)


ps = _list_command(CONTAINERS, "List containers.")
images = _list_command(IMAGES, "List images.")
networks = _list_command(NETWORKS, "List networks.")
volumes = _list_command(VOLUMES, "List volumes.")


@main.command()
@click.option("--watch", "-w", is_flag=True, help="Keep checking the engine")
@click.pass_obj
def info(session: Session, watch: bool) -> None:
    """Show engine version and host information."""
    if not watch:
        try:
            status = EngineStatus.from_api(session.client.version(), session.client.info())
        except EngineControlError as e:
            logger.error(f"Engine status check failed: {e}")
            status = EngineStatus(online=False, error=str(e))
        console.print(render_engine(status))
        return
    state = session.reconciler.state
    with Live(render_engine(state.get_engine_status()), console=console) as live:
        subscription = session.reconciler.subscribe_engine(lambda status: None)
        _watch(subscription, state, lambda: live.update(render_engine(state.get_engine_status())))


@main.command()
@click.argument("container_id")
@click.option("--tail", "-n", type=int, default=None, help="Number of lines (default: from config)")
@click.option("--watch", "-w", is_flag=True, help="Keep polling for new output")
@click.pass_context
def logs(ctx: click.Context, container_id: str, tail: Optional[int], watch: bool) -> None:
    """Show a container's stdout and stderr."""
    session: Session = ctx.obj
    if not watch:
        try:
            lines = list(session.client.iter_container_logs(
                container_id, tail=tail if tail is not None else session.config.logs.tail
            ))
        except EngineControlError as e:
            console.print(f"[red]Error: {e}[/red]")
            ctx.exit(1)
        console.print(render_logs(lines))
        return

    def update(lines: List[LogLine], error: Optional[Exception]) -> None:
        text = render_logs(lines)
        if error is not None:
            text.append(f"[{error}]\n", style="red")
        live.update(text)

    with Live(Text(), console=console) as live:
        _watch(session.reconciler.subscribe_logs(container_id, update, tail=tail))


@main.command()
@click.argument("container_id")
@click.pass_context
def start(ctx: click.Context, container_id: str) -> None:
    """Start a container."""
    _finish(ctx, ctx.obj.dispatcher.start_container(container_id))


@main.command()
@click.argument("container_id")
@click.pass_context
def stop(ctx: click.Context, container_id: str) -> None:
    """Stop a container."""
    _finish(ctx, ctx.obj.dispatcher.stop_container(container_id))


@main.command()
@click.argument("container_id")
@click.option("--force", "-f", is_flag=True, help="Remove even if running")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def rm(ctx: click.Context, container_id: str, force: bool, yes: bool) -> None:
    """Delete a container."""
    if not yes:
        click.confirm(f"Delete container {container_id}?", abort=True)
    _finish(ctx, ctx.obj.dispatcher.delete_container(container_id, force=force))


@main.command()
@click.argument("reference")
@click.pass_context
def pull(ctx: click.Context, reference: str) -> None:
    """Pull an image (repo[:tag], default tag latest)."""
    result = ctx.obj.dispatcher.pull_image(reference)
    if result.ok:
        for line in result.data or []:
            console.print(line, markup=False, highlight=False)
    _finish(ctx, result)
