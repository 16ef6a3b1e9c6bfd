"""Identity resolution: which role is this invocation acting as?"""

import os
import subprocess
from dataclasses import dataclass

from .config import AmailConfig
from .errors import IdentityError

ENV_IDENTITY = "AMAIL_IDENTITY"


@dataclass
class Resolution:
    """A resolved identity and a human-readable description of where it came from."""
    identity: str
    source: str


def is_in_tmux() -> bool:
    return bool(os.environ.get("TMUX"))


def get_tmux_session() -> str | None:
    """Current tmux session name, or None outside tmux."""
    if not is_in_tmux():
        return None
    try:
        result = subprocess.run(
            ["tmux", "display-message", "-p", "#S"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return result.stdout.strip() or None


def resolve(config: AmailConfig | None) -> Resolution | None:
    """Resolve identity: $AMAIL_IDENTITY, then tmux session mapping, else None."""
    env_identity = os.environ.get(ENV_IDENTITY)
    if env_identity:
        return Resolution(env_identity, f"environment variable (${ENV_IDENTITY})")

    session = get_tmux_session()
    if session and config and session in config.identity_tmux:
        return Resolution(
            config.identity_tmux[session],
            f"tmux session mapping ({session})",
        )

    return None


def must_resolve(config: AmailConfig | None) -> Resolution:
    """Like resolve(), but raises IdentityError if no identity is set."""
    res = resolve(config)
    if res is None:
        raise IdentityError()
    return res


def export_command(identity: str) -> str:
    """Shell command that sets the identity, single-quoted against injection."""
    quoted = "'" + identity.replace("'", "'\\''") + "'"
    return f"export {ENV_IDENTITY}={quoted}"
