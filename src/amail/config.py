"""Project discovery and configuration via YAML."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigError

AMAIL_DIR = ".amail"
CONFIG_FILE = "config.yaml"
USER_ROLE = "user"  # reserved role for the human
BUILTIN_GROUPS = ("all", "agents", "others")
DEFAULT_INTERVAL = 2
DEFAULT_NOTIFY_COMMANDS = ["echo 📬 New message from {from}: {subject}"]


@dataclass
class AmailConfig:
    """Top-level amail project configuration."""
    roles: list[str] = field(default_factory=list)
    groups: dict[str, list[str]] = field(default_factory=dict)
    identity_tmux: dict[str, str] = field(default_factory=dict)  # tmux session -> role
    watch_interval: int = DEFAULT_INTERVAL
    notify: dict[str, list[str]] = field(
        default_factory=lambda: {"default": list(DEFAULT_NOTIFY_COMMANDS)}
    )  # priority (or "default") -> shell command templates

    def all_roles(self) -> list[str]:
        """Configured roles plus the reserved "user" role."""
        return [*self.roles, USER_ROLE]

    def is_valid_role(self, role: str) -> bool:
        return role == USER_ROLE or role in self.roles

    def resolve_group(self, name: str, current_identity: str | None = None) -> list[str] | None:
        """Resolve "@group" to its members.

        Built-ins: @all (roles + user), @agents (roles only), @others (all
        roles except the current identity). Returns None if `name` is not a
        group reference or the group is unknown.
        """
        if not name.startswith("@"):
            return None
        group = name[1:]
        if group == "all":
            return self.all_roles()
        if group == "agents":
            return list(self.roles)
        if group == "others":
            return [r for r in self.all_roles() if r != current_identity]
        if group in self.groups:
            return list(self.groups[group])
        return None

    def notify_commands(self, priority: str) -> list[str]:
        """Notification commands for a priority, falling back to "default"."""
        if priority in self.notify:
            return self.notify[priority]
        return self.notify.get("default", [])


def find_amail_root(start: Path | None = None) -> Path | None:
    """Find amail project root (directory containing .amail/).

    First checks AMAIL_ROOT environment variable, then walks up from start/cwd.
    """
    env_root = os.environ.get("AMAIL_ROOT")
    if env_root:
        env_path = Path(env_root).resolve()
        if (env_path / AMAIL_DIR).is_dir():
            return env_path

    path = (start or Path.cwd()).resolve()
    while True:
        if (path / AMAIL_DIR).is_dir():
            return path
        if path == path.parent:
            return None
        path = path.parent


def get_amail_root(require: bool = True) -> Path:
    """Get amail project root, raising if not found and require=True."""
    root = find_amail_root()
    if not root and require:
        raise FileNotFoundError(
            "Not in an amail project. Run 'amail init' first."
        )
    return root or Path.cwd()


def get_config_path(root: Path | None = None) -> Path:
    """Get path to config.yaml."""
    root = root or get_amail_root()
    return root / AMAIL_DIR / CONFIG_FILE


def _str_list(value, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list")
    return [str(v) for v in value]


def _mapping(value, key: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping")
    return value


def load_config(root: Path | None = None) -> AmailConfig:
    """Load config from config.yaml. Missing file or keys fall back to defaults."""
    config_path = get_config_path(root)
    if not config_path.exists():
        return AmailConfig()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"failed to parse {config_path}: expected a mapping")

    agents = _mapping(data.get("agents"), "agents")
    groups = {
        str(name): _str_list(members, f"groups.{name}")
        for name, members in _mapping(data.get("groups"), "groups").items()
    }
    identity = _mapping(data.get("identity"), "identity")
    tmux = _mapping(identity.get("tmux"), "identity.tmux")
    watch = _mapping(data.get("watch"), "watch")
    try:
        interval = int(watch.get("interval") or DEFAULT_INTERVAL)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"watch.interval must be an integer: {e}") from e

    config = AmailConfig(
        roles=_str_list(agents.get("roles"), "agents.roles"),
        groups=groups,
        identity_tmux={str(k): str(v) for k, v in tmux.items()},
        watch_interval=interval,
    )
    notify = _mapping(data.get("notify"), "notify")
    if notify:
        config.notify = {
            str(priority): _str_list(
                _mapping(entry, f"notify.{priority}").get("commands"),
                f"notify.{priority}.commands",
            )
            for priority, entry in notify.items()
        }
    return config


def save_config(config: AmailConfig, root: Path | None = None) -> None:
    """Save config to config.yaml."""
    config_path = get_config_path(root)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict = {"agents": {"roles": config.roles}}
    if config.groups:
        data["groups"] = config.groups
    if config.identity_tmux:
        data["identity"] = {"tmux": config.identity_tmux}
    data["watch"] = {"interval": config.watch_interval}
    data["notify"] = {
        priority: {"commands": commands}
        for priority, commands in config.notify.items()
    }

    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def default_config_text(roles: list[str]) -> str:
    """Commented config.yaml written by `amail init`."""
    roles_yaml = yaml.safe_dump(list(roles), default_flow_style=True).strip()
    return f"""\
# amail project configuration

agents:
  roles: {roles_yaml}

# Custom groups, addressed as @name
groups: {{}}
#  engineers: [dev, qa]
#  leads: [pm, dev]

identity:
  # Map tmux session names to roles
  tmux: {{}}
  #  myproject-dev: dev
  #  myproject-pm: pm

watch:
  interval: {DEFAULT_INTERVAL}  # polling interval in seconds

# Shell commands run by `amail watch` / `amail check --notify`.
# Placeholders: {{id}} {{from}} {{to}} {{subject}} {{body}} {{priority}} {{type}} {{timestamp}}
notify:
  default:
    commands:
      - "echo 📬 New message from {{from}}: {{subject}}"
  high:
    commands:
      - "echo 📬 {{from}}: {{subject}}"
  urgent:
    commands:
      - "echo 🚨 URGENT from {{from}}: {{subject}}"
"""
