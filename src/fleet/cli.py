import click

from fleet import __version__

# Import command modules for registration
from fleet.guard_commands import register_guard_commands
from fleet.spawn_commands import register_spawn_commands
from fleet.status_commands import register_status_commands


@click.group()
@click.version_option(version=__version__, prog_name="fleet")
def cli():
    """Spawn and coordinate coding agents in isolated worktrees."""
    pass


# Register commands from external modules
register_spawn_commands(cli)
register_status_commands(cli)
register_guard_commands(cli)


if __name__ == '__main__':
    cli()
