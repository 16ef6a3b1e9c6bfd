"""Exception types shared by the store, config and CLI layers."""


class StoreError(RuntimeError):
    """A database operation failed (constraint violation, lock timeout, I/O)."""
    code = "store_error"


class AmbiguousPrefixError(StoreError):
    """An ID prefix matched more than one message in an inbox."""
    code = "ambiguous_prefix"

    def __init__(self, prefix: str, count: int):
        super().__init__(f"ambiguous ID prefix: {prefix} matches {count} messages")
        self.prefix = prefix
        self.count = count


class ConfigError(ValueError):
    """The project config file could not be parsed."""
    code = "config_error"


class IdentityError(RuntimeError):
    """No identity could be resolved for this invocation."""
    code = "identity_error"

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "identity not set. Use 'source <(amail use <role>)' or set $AMAIL_IDENTITY"
        )


class RecipientError(ValueError):
    """A recipient list could not be resolved to roles."""
    code = "recipient_error"


class MessageNotFoundError(LookupError):
    """A message reference given on the command line matched nothing."""
    code = "not_found"

    def __init__(self, reference: str):
        super().__init__(f"message not found: {reference}")
        self.reference = reference
