"""Per-project mailbox for agent roles."""

__version__ = "0.2.0"

from .config import AmailConfig, find_amail_root, load_config
from .errors import (
    AmbiguousPrefixError,
    ConfigError,
    IdentityError,
    MessageNotFoundError,
    RecipientError,
    StoreError,
)
from .storage import InboxMessage, MailStore, Message, open_project

__all__ = [
    "AmailConfig",
    "AmbiguousPrefixError",
    "ConfigError",
    "IdentityError",
    "InboxMessage",
    "MailStore",
    "Message",
    "MessageNotFoundError",
    "RecipientError",
    "StoreError",
    "find_amail_root",
    "load_config",
    "open_project",
]
