"""Stats command: per-role message counts."""

import click
from click import echo
from rich.console import Console
from rich.table import Table

from ..config import get_amail_root, load_config
from ..storage import open_project

from .utils import OutputMode, handle_errors, pass_output


@click.command()
@pass_output
@handle_errors
def stats(out: OutputMode):
    """Show unread and total message counts per role.

    Roles with no messages are left out.

    \b
    Examples:
      amail stats
    """
    root = get_amail_root()
    config = load_config(root)
    with open_project(root) as (store, _):
        rows = [
            (role, store.count_unread(role), store.count_all(role))
            for role in config.all_roles()
        ]
    rows = [row for row in rows if row[2]]

    total_unread = sum(unread for _, unread, _ in rows)
    total_all = sum(n for _, _, n in rows)

    if out.json:
        out.print_json({
            "roles": {role: {"unread": unread, "total": n} for role, unread, n in rows},
            "total": {"unread": total_unread, "total": total_all},
        })
        return

    if not rows:
        echo("No messages.")
        return

    table = Table(box=None, header_style="bold")
    table.add_column("ROLE")
    table.add_column("UNREAD", justify="right")
    table.add_column("TOTAL", justify="right")
    for role, unread, n in rows:
        table.add_row(role, f"[yellow]{unread}[/]" if unread else "0", str(n))
    table.add_row("[bold]TOTAL[/]", f"[bold]{total_unread}[/]", f"[bold]{total_all}[/]")
    Console().print(table)
