"""`fleet spawn` command."""

import click
from rich.console import Console

from fleet.config import CAPABILITIES
from fleet.errors import FleetError
from fleet.json_output import error_envelope, output_json
from fleet.runtimes import RUNTIMES
from fleet.spawn import SpawnOptions, SpawnResult, spawn_agent


def print_spawn_summary(result: SpawnResult) -> None:
    console = Console()
    console.print(f"[green]Spawned[/green] [bold]{result.agent_name}[/bold] ({result.capability})")
    console.print(f"  Task:     {result.task_id}")
    console.print(f"  Branch:   {result.branch_name}")
    console.print(f"  Worktree: {result.worktree_path}")
    console.print(f"  Tmux:     {result.tmux_session}")
    console.print(f"  PID:      {result.pid}")
    console.print(f"  Run:      {result.run_id}")


def register_spawn_commands(cli):
    """Register spawn-related commands with the CLI."""

    @cli.command()
    @click.argument('task_id')
    @click.option('--name', required=True, help='Unique agent name (e.g. builder-auth)')
    @click.option('--capability', default='builder', show_default=True,
                  help=f'Agent capability: {", ".join(CAPABILITIES)}')
    @click.option('--spec', 'spec_path', help='Path to the task spec file')
    @click.option('--files', help='Comma-separated file scope (e.g. "src/a.py,src/b.py")')
    @click.option('--parent', help='Name of the spawning agent (omit when spawning from the coordinator)')
    @click.option('--depth', default='0', show_default=True, help='Depth in the agent tree (coordinator is 0)')
    @click.option('--force-depth', is_flag=True, help='Bypass the agents.max_depth limit')
    @click.option('--skip-task-check', is_flag=True, help='Do not look up the task in the tracker')
    @click.option('--force-hierarchy', is_flag=True, help='Allow the coordinator to spawn non-lead agents')
    @click.option('--max-agents', help='Per-parent active agent limit (overrides agents.max_agents_per_lead)')
    @click.option('--runtime', 'runtime_name', type=click.Choice(sorted(RUNTIMES)),
                  help='Agent runtime (default: runtime.default from config, else claude)')
    @click.option('--skip-scout', is_flag=True, help='Lead goes straight to building; silences the no-scout warning')
    @click.option('--skip-review', is_flag=True, help='Lead reviews its builders itself')
    @click.option('--dispatch-max-agents', help='Tell a lead how many sub-workers it may spawn')
    @click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
    def spawn(task_id, name, capability, spec_path, files, parent, depth, force_depth,
              skip_task_check, force_hierarchy, max_agents, runtime_name, skip_scout,
              skip_review, dispatch_max_agents, json_output):
        """
        Spawn an agent for TASK_ID in its own worktree and tmux session.

        \b
        Examples:
          fleet spawn fleet-42 --name lead-auth --capability lead
          fleet spawn fleet-42 --name builder-auth --parent lead-auth --depth 1 \\
              --spec specs/auth.md --files src/auth.py,tests/test_auth.py
        """
        options = SpawnOptions(
            name=name,
            capability=capability,
            spec=spec_path,
            files=files,
            parent=parent,
            depth=depth,
            force_depth=force_depth,
            skip_task_check=skip_task_check,
            force_hierarchy=force_hierarchy,
            json=json_output,
            max_agents=max_agents,
            runtime=runtime_name,
            skip_scout=skip_scout,
            skip_review=skip_review,
            dispatch_max_agents=dispatch_max_agents,
        )

        try:
            result = spawn_agent(task_id, options)
        except FleetError as e:
            if json_output:
                click.echo(output_json(error_envelope("spawn", e)))
            else:
                click.echo(f"Error [{e.code}]: {e.message}", err=True)
            raise SystemExit(1)

        if json_output:
            click.echo(output_json({"success": True, "command": "spawn", **result.to_dict()}))
        else:
            print_spawn_summary(result)
