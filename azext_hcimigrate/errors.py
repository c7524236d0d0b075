"""Error taxonomy for az hcimigrate.

Every error derives from :class:`knack.util.CLIError` so the Azure CLI
prints the message and exits non-zero without a traceback.
"""

from knack.util import CLIError


class MigrateError(CLIError):
    """Base class for all hcimigrate errors."""


class ValidationError(MigrateError):
    """Missing, malformed or contradictory input.

    Raised before any resource is created or modified.
    """


class InvalidTransitionError(ValidationError):
    """A replication state change the state machine does not allow."""


class NotFoundError(MigrateError):
    """A referenced machine, project, vault or protected item does not exist."""

    def __init__(self, kind: str, identifier: str, hint: str = ""):
        self.kind = kind
        self.identifier = identifier
        message = f"{kind} '{identifier}' not found."
        if hint:
            message += f"\n{hint}"
        super().__init__(message)


class TransientError(MigrateError):
    """A retryable failure (timeouts, throttling, service unavailable)."""


class ReplicationFailedError(MigrateError):
    """The service reported that initial replication of an item failed."""
