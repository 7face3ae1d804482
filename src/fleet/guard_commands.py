"""Commands called from inside agent sessions: guard, activity, mail.

`fleet guard` and `fleet activity` are runtime hook targets (see
runtimes/claude.py and the generated Pi extension). They read the hook
payload from stdin and always exit 0; a block is reported through the JSON
printed on stdout, as Claude Code PreToolUse hooks expect.
"""

import json
import os
import sqlite3
import sys

import click

from fleet.config import get_config, resolve_quality_gates
from fleet.errors import FleetError
from fleet.json_output import output_json
from fleet.logging import FleetLogger
from fleet.mail import MESSAGE_TYPES, PRIORITIES, MailClient, MailStore, format_for_injection, get_mail_db_path
from fleet.path_utils import resolve_project_root
from fleet.runtimes.guards import evaluate_tool_call
from fleet.sessions import SessionStore, get_sessions_db_path


def deny_output(reason: str) -> dict:
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "deny",
            "permissionDecisionReason": reason,
        }
    }


def _current_agent(agent):
    return agent or os.environ.get("FLEET_AGENT_NAME") or "orchestrator"


def register_guard_commands(cli):
    """Register agent-side hook and mail commands with the CLI."""

    @cli.command(hidden=True)
    @click.option('--agent', 'agent_name', required=True, help='Agent making the tool call')
    @click.option('--capability', required=True, help='Capability of the agent')
    @click.option('--worktree', 'worktree_path', help='Agent worktree; writes outside it are blocked')
    def guard(agent_name, capability, worktree_path):
        """PreToolUse hook: read a tool call from stdin and deny it if not allowed."""
        try:
            payload = json.load(sys.stdin)
        except json.JSONDecodeError:
            # Invalid JSON, allow the call
            return

        gates = resolve_quality_gates(get_config(resolve_project_root()))
        reason = evaluate_tool_call(
            payload.get("tool_name", ""),
            payload.get("tool_input") or {},
            capability,
            worktree_path=worktree_path,
            quality_gates=[gate["command"] for gate in gates],
        )
        if reason is None:
            return

        FleetLogger().log_event("guard", f"Blocked {payload.get('tool_name')}", {
            "agent_name": agent_name,
            "capability": capability,
            "reason": reason,
        }, level="WARN")
        click.echo(json.dumps(deny_output(reason)))

    @cli.command(hidden=True)
    @click.option('--agent', 'agent_name', required=True, help='Agent reporting activity')
    def activity(agent_name):
        """Hook: record activity for an agent (promotes booting to working)."""
        project_root = resolve_project_root()
        try:
            with SessionStore(get_sessions_db_path(project_root)) as store:
                store.update_last_activity(agent_name)
        except sqlite3.Error as e:
            FleetLogger().log_warning("activity", "Could not record activity", {
                "agent_name": agent_name,
                "reason": str(e),
            })

    @cli.group()
    def mail():
        """Agent mailbox."""
        pass

    @mail.command('check')
    @click.option('--agent', 'agent_name', help='Mailbox to read (default: $FLEET_AGENT_NAME)')
    @click.option('--inject', is_flag=True, help='Print messages as prompt context (hook mode)')
    @click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
    def mail_check(agent_name, inject, json_output):
        """Read and mark unread messages."""
        agent_name = _current_agent(agent_name)
        with MailStore(get_mail_db_path(resolve_project_root())) as store:
            messages = MailClient(store).check(agent_name)

        if json_output:
            click.echo(output_json({"agent_name": agent_name, "messages": [m.to_dict() for m in messages]}))
            return

        if inject:
            text = format_for_injection(messages)
            if text:
                click.echo(text)
            return

        if not messages:
            click.echo(f"No new mail for {agent_name}.")
            return
        click.echo(format_for_injection(messages))

    @mail.command('send')
    @click.option('--to', 'to_agent', required=True, help='Recipient agent name')
    @click.option('--subject', required=True, help='Subject line')
    @click.option('--body', required=True, help='Message body')
    @click.option('--type', 'message_type', type=click.Choice(sorted(MESSAGE_TYPES)), default='status',
                  show_default=True)
    @click.option('--priority', type=click.Choice(PRIORITIES), default='normal', show_default=True)
    @click.option('--agent', 'agent_name', help='Sender (default: $FLEET_AGENT_NAME)')
    def mail_send(to_agent, subject, body, message_type, priority, agent_name):
        """Send a message to another agent."""
        sender = _current_agent(agent_name)
        try:
            with MailStore(get_mail_db_path(resolve_project_root())) as store:
                message_id = MailClient(store).send(
                    sender, to_agent, subject, body, type=message_type, priority=priority
                )
        except FleetError as e:
            click.echo(f"Error [{e.code}]: {e.message}", err=True)
            raise SystemExit(1)
        click.echo(f"Sent {message_id} to {to_agent}")
