"""`fleet status` and `fleet logs`."""

import click
from rich.console import Console
from rich.table import Table

from fleet.json_output import output_json, serialize_session
from fleet.logging import FleetLogger
from fleet.path_utils import resolve_project_root
from fleet.sessions import RunStore, SessionStore, get_sessions_db_path

STATE_STYLES = {
    "booting": "yellow",
    "working": "green",
    "stalled": "red",
    "zombie": "dim",
    "completed": "blue",
}


def register_status_commands(cli):
    """Register status and log commands with the CLI."""

    @cli.command()
    @click.option('--all', 'show_all', is_flag=True, help='Include completed and zombie sessions')
    @click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
    def status(show_all, json_output):
        """Show agent sessions for the current project."""
        project_root = resolve_project_root()
        db_path = get_sessions_db_path(project_root)

        with SessionStore(db_path) as session_store, RunStore(db_path) as run_store:
            sessions = session_store.get_all() if show_all else session_store.get_active()
            run = run_store.get_active_run()

        if json_output:
            click.echo(output_json({
                "run": run.to_dict() if run else None,
                "sessions": [serialize_session(s) for s in sessions],
            }))
            return

        console = Console()
        if run:
            console.print(f"[bold]Run:[/bold] {run.id} ({run.agent_count} agents spawned)")

        if not sessions:
            console.print("[yellow]No agent sessions.[/yellow]")
            return

        table = Table(title="Agents")
        table.add_column("Name", style="cyan")
        table.add_column("Capability", style="blue")
        table.add_column("State")
        table.add_column("Task")
        table.add_column("Parent")
        table.add_column("Depth", justify="right")
        table.add_column("Tmux")
        table.add_column("Last activity")

        for s in sessions:
            style = STATE_STYLES.get(s.state, "white")
            table.add_row(
                s.agent_name,
                s.capability,
                f"[{style}]{s.state}[/{style}]",
                s.task_id,
                s.parent_agent or "-",
                str(s.depth),
                s.tmux_session,
                s.last_activity,
            )

        console.print(table)

    @cli.command()
    @click.option('--limit', default=50, help='Number of log entries to show (default: 50)')
    @click.option('--command', 'command_filter', help='Filter by command name (spawn, store, guard, etc.)')
    @click.option('--level', 'level_filter', help='Filter by log level (INFO, WARN, ERROR, DEBUG)')
    def logs(limit, command_filter, level_filter):
        """View fleet command logs with optional filtering."""
        fleet_logger = FleetLogger()

        entries = fleet_logger.read_logs(
            limit=limit,
            command_filter=command_filter,
            level_filter=level_filter
        )

        if not entries:
            click.echo("No log entries found.")
            return

        click.echo()
        click.echo(f"Fleet logs (showing {len(entries)} entries)")
        click.echo()

        for entry in reversed(entries):
            marker = {
                'INFO': '+',
                'WARN': '!',
                'ERROR': 'x',
                'DEBUG': '.',
            }.get(entry['level'], '.')

            click.echo(f"{marker} {entry['timestamp']} [{entry['command']}] {entry['message']}")

            if 'agent_name' in entry['data']:
                click.echo(f"   Agent: {entry['data']['agent_name']}")
            if 'duration_ms' in entry['data']:
                click.echo(f"   Duration: {entry['data']['duration_ms']}ms")
