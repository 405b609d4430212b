"""
CLI commands for atune.

Provides the `atune` command-line interface for watching projects, one-off
syncs, the single-rule entry point used by the watcher, and configuration
inspection.
"""

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from config.loader import ConfigurationError, ConfigurationLoader, find_rule
from core import __version__
from core.models.config import AtuneConfig, GlobalSettings, Project
from core.sync import (
    HookError,
    SubprocessSyncBackend,
    SyncExecutor,
    TransferError,
    WatchRegistrationError,
    WatchSupervisor,
    sync_all_once,
)

logger = logging.getLogger(__name__)

console = Console()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_STOP_SIGNALS = [
    sig for sig in (
        getattr(signal, 'SIGINT', None),
        getattr(signal, 'SIGTERM', None),
        getattr(signal, 'SIGQUIT', None),
    )
    if sig is not None
]

CONFIG_TEMPLATE = """\
# atune configuration
#
# debounce: 100ms
# projects:
#   my-project:
#     restart: true
#     sync:
#       - src: ./src
#         dst: user@host:/srv/my-project
#         on_sync:
#           - command: echo "synced $ATUNE_SYNC_SRC to $ATUNE_SYNC_DST"
#             continue_on_failure: true
projects: {}
"""


def configure_logging(level: str) -> None:
    """Configure the root logger for CLI use."""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger().setLevel(level)


def _load_config(settings: GlobalSettings) -> AtuneConfig:
    """Load the configuration file or exit with status 1."""
    try:
        return ConfigurationLoader(settings).load(settings.config_path)
    except ConfigurationError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="atune")
@click.option(
    '--config', '-c', 'config_path',
    type=click.Path(dir_okay=False, path_type=Path),
    help='Config file (default: ./atune.yaml, env: ATUNE_CONFIG_PATH)'
)
@click.option(
    '--rsync', '-r',
    help='Sync tool executable (default: rsync, env: ATUNE_RSYNC)'
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    help='Log level (default: INFO, env: ATUNE_LOG_LEVEL)'
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], rsync: Optional[str], log_level: Optional[str]):
    """
    atune - continuous file-tree mirroring with hooks.

    Watches the source trees of every configured project and re-runs rsync
    and the rule's hook commands whenever something changes.
    """
    overrides = {
        key: value for key, value in (
            ('config_path', config_path),
            ('rsync', rsync),
            ('log_level', log_level),
        )
        if value is not None
    }
    try:
        settings = GlobalSettings(**overrides)
    except ValidationError as e:
        console.print(f"[red]❌ Invalid settings: {escape(str(e))}[/red]")
        sys.exit(1)

    configure_logging(settings.log_level)
    ctx.obj = settings


@main.command()
@click.pass_obj
def watch(settings: GlobalSettings):
    """Watch every project and sync on change."""
    config = _load_config(settings)
    if not config.projects:
        console.print("[yellow]⚠️  No projects configured, nothing to watch[/yellow]")
        return

    def backend_factory(project: Project) -> SubprocessSyncBackend:
        return SubprocessSyncBackend(
            settings.config_path,
            rsync=settings.rsync,
            log_level=settings.log_level
        )

    supervisor = WatchSupervisor(config, backend_factory, settings.terminate_grace_s)
    stop_requested = threading.Event()

    def request_stop(signum, frame):
        logger.info(f"Signal ({signal.Signals(signum).name}) received. Stopping...")
        stop_requested.set()

    previous_handlers = {sig: signal.signal(sig, request_stop) for sig in _STOP_SIGNALS}
    try:
        try:
            supervisor.start()
        except WatchRegistrationError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            sys.exit(1)

        console.print(f"[green]👀 Watching {len(config.projects)} project(s)[/green]")
        while not stop_requested.wait(0.5):
            if not any(project.is_alive() for project in supervisor.projects.values()):
                break
    finally:
        supervisor.stop()
        supervisor.join()
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    if supervisor.failed_projects:
        console.print(f"[red]❌ Watch failed for: {', '.join(supervisor.failed_projects)}[/red]")
        sys.exit(1)


@main.command('sync-once')
@click.option(
    '--no-run-commands',
    is_flag=True,
    help='Only transfer files, skip every hook command'
)
@click.pass_obj
def sync_once(settings: GlobalSettings, no_run_commands: bool):
    """Sync every enabled rule of every project once."""
    config = _load_config(settings)
    if no_run_commands:
        config = config.without_hooks()

    failures = sync_all_once(config, SyncExecutor(settings.rsync, settings.shell))
    if failures:
        console.print(f"[red]❌ {len(failures)} rule(s) failed to sync[/red]")
        sys.exit(1)


@main.command('sync-project')
@click.option('--project', '-p', 'project_name', required=True, help='Project name')
@click.option('--index', type=int, help='Position of the rule in the project')
@click.option(
    '--src',
    type=click.Path(path_type=Path),
    help='Source path of the rule'
)
@click.option(
    '--initialize', '-i',
    is_flag=True,
    help='Also run the rule\'s on_init commands'
)
@click.pass_obj
def sync_project(
    settings: GlobalSettings,
    project_name: str,
    index: Optional[int],
    src: Optional[Path],
    initialize: bool
):
    """Sync a single rule of a project."""
    if (index is None) == (src is None):
        raise click.UsageError("Exactly one of --index or --src is required")

    config = _load_config(settings)
    try:
        rule = find_rule(config, project_name, index=index, src=src)
    except ConfigurationError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)

    try:
        SyncExecutor(settings.rsync, settings.shell).execute(rule, initialize=initialize)
    except (TransferError, HookError) as e:
        logger.error(f"[{project_name}] {e}")
        sys.exit(1)


@main.command()
@click.pass_obj
def status(settings: GlobalSettings):
    """Show the configured projects and sync rules."""
    config = _load_config(settings)

    console.print(f"[bold blue]atune[/bold blue] [dim]{escape(str(settings.config_path))}[/dim]")
    console.print(f"[dim]Debounce: {config.debounce.total_seconds() * 1000:g}ms[/dim]")

    if not config.projects:
        console.print("[yellow]⚠️  No projects configured[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Project", style="cyan")
    table.add_column("Restart")
    table.add_column("Source")
    table.add_column("Destination")
    table.add_column("Recursive")
    table.add_column("Hooks")
    table.add_column("Enabled")

    for project in config.projects.values():
        if not project.sync:
            table.add_row(escape(project.name), _yes_no(project.restart), "[dim]no rules[/dim]", "", "", "", "")
            continue
        for position, rule in enumerate(project.sync):
            table.add_row(
                escape(project.name) if position == 0 else "",
                _yes_no(project.restart) if position == 0 else "",
                escape(str(rule.src)),
                escape(rule.dst) if rule.has_destination else "[dim](hooks only)[/dim]",
                _yes_no(rule.recursive),
                f"{len(rule.on_init)} init / {len(rule.on_sync)} sync",
                "[green]✅[/green]" if rule.enabled else "[red]❌[/red]",
            )

    console.print(table)


@main.command()
@click.pass_obj
def edit(settings: GlobalSettings):
    """Open the config file in $EDITOR and validate it."""
    config_path = settings.config_path
    if not config_path.exists():
        console.print(f"[blue]📝 Creating {config_path}[/blue]")
        config_path.write_text(CONFIG_TEMPLATE, encoding='utf-8')

    click.edit(filename=str(config_path))

    config = _load_config(settings)
    console.print(f"[green]✅ Configuration is valid ({len(config.projects)} project(s))[/green]")


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


if __name__ == "__main__":
    main()
