"""Project and identity commands: init, list, use, whoami, version."""

from pathlib import Path

import click
from click import argument, echo, option

from .. import __version__
from ..addressing import dedupe, parse_recipients
from ..config import (
    AMAIL_DIR,
    BUILTIN_GROUPS,
    USER_ROLE,
    AmailConfig,
    default_config_text,
    find_amail_root,
    get_amail_root,
    get_config_path,
    load_config,
)
from ..errors import ConfigError
from ..identity import ENV_IDENTITY, export_command, get_tmux_session, is_in_tmux, resolve
from ..storage import MAIL_DB, MailStore, get_db_path

from .utils import OutputMode, err, fail, handle_errors, pass_output


def format_roles(config: AmailConfig) -> str:
    roles = [f"{r} (reserved)" if r == USER_ROLE else r for r in config.all_roles()]
    return ", ".join(roles)


@click.command()
@option('-a', '--agents', default="", help="Comma-separated agent roles (e.g. pm,dev,qa)")
@pass_output
@handle_errors
def init(out: OutputMode, agents: str):
    """Initialize amail in the current directory.

    \b
    Creates .amail/ with:
      mail.db      SQLite database for messages
      config.yaml  roles, groups, identity mapping, notifications

    \b
    Examples:
      amail init
      amail init --agents pm,dev,qa
    """
    root = Path.cwd()
    amail_dir = root / AMAIL_DIR
    if amail_dir.exists():
        fail(out, "amail already initialized in this directory", "already_initialized")

    roles = dedupe([r for r in parse_recipients(agents) if r != USER_ROLE])

    amail_dir.mkdir(parents=True)
    config_path = get_config_path(root)
    config_path.write_text(default_config_text(roles))
    with MailStore(get_db_path(root)):
        pass  # Just create schema

    if out.json:
        out.print_json({
            "root": str(root),
            "database": str(get_db_path(root)),
            "config": str(config_path),
            "roles": roles,
        })
        return

    echo(f"✓ Initialized amail in {root}")
    echo(f"  Created {AMAIL_DIR}/{MAIL_DB}")
    echo(f"  Created {AMAIL_DIR}/{config_path.name}")
    if roles:
        echo(f"  Agent roles: {', '.join(roles)}")
    echo()
    echo("Next steps:")
    echo(f"  1. Edit {AMAIL_DIR}/{config_path.name} to customize settings")
    echo("  2. Set your identity: source <(amail use <role>)")
    echo('  3. Send a message: amail send <to> "subject" "body"')


@click.command("list")
@pass_output
@handle_errors
def list_roles(out: OutputMode):
    """List roles (mailboxes) and groups.

    \b
    Examples:
      amail list
    """
    config = load_config(get_amail_root())

    if out.json:
        data = {
            "roles": config.all_roles(),
            "builtin_groups": [f"@{g}" for g in BUILTIN_GROUPS],
        }
        if config.groups:
            data["groups"] = {name: {"members": members} for name, members in config.groups.items()}
        out.print_json(data)
        return

    echo("Roles:")
    for role in config.roles:
        echo(f"  {role}")
    echo(f"  {USER_ROLE} (reserved)")

    if config.groups:
        echo()
        echo("Groups:")
        for name, members in config.groups.items():
            echo(f"  @{name}: {', '.join(members)}")

    echo()
    echo("Built-in groups:")
    echo("  @all: all roles + user")
    echo("  @agents: all roles (excludes user)")
    echo("  @others: all except sender")


@click.command(no_args_is_help=True)
@argument('role')
def use(role: str):
    """Print a shell command that sets the identity.

    \b
    Examples:
      source <(amail use dev)
      eval "$(amail use pm)"

    Sets $AMAIL_IDENTITY. Works outside a project too; inside one, unknown
    roles get a warning on stderr.
    """
    root = find_amail_root()
    if root:
        try:
            config = load_config(root)
        except ConfigError:
            config = None
        if config and not config.is_valid_role(role):
            # Comments on stderr so `source` ignores them
            err(f"# Warning: '{role}' is not a defined role")
            err(f"# Available roles: {format_roles(config)}")
    echo(export_command(role))


@click.command()
@pass_output
@handle_errors
def whoami(out: OutputMode):
    """Show the current identity and how it was resolved.

    \b
    Resolution order:
      1. $AMAIL_IDENTITY
      2. tmux session name, mapped in config (identity.tmux)
      3. not set
    """
    config = load_config(get_amail_root())
    res = resolve(config)

    if out.json:
        out.print_json({
            "identity": res.identity if res else None,
            "source": res.source if res else None,
            "valid_role": config.is_valid_role(res.identity) if res else False,
        })
        return

    if res is None:
        echo("Identity not set.")
        echo()
        echo("Resolution attempted:")
        echo(f"  - ${ENV_IDENTITY}: not set")
        if is_in_tmux():
            echo(f"  - tmux session: {get_tmux_session()} (no mapping in config)")
        else:
            echo("  - tmux: not running in tmux")
        echo()
        echo("To set identity:")
        echo("  source <(amail use <role>)")
        echo()
        echo(f"Available roles: {format_roles(config)}")
        return

    echo(res.identity)
    echo(f"  (from {res.source})")
    if not config.is_valid_role(res.identity):
        echo()
        echo(f"  Warning: '{res.identity}' is not a defined role")
        echo(f"  Available roles: {format_roles(config)}")


@click.command()
def version():
    """Print version information."""
    echo(f"amail {__version__}")
