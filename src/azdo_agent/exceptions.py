"""Custom exceptions for agent provisioning."""


class AgentProvisioningError(Exception):
    """Base exception for agent provisioning errors."""

    pass


class MissingCredential(AgentProvisioningError):
    """Required secret absent and no interactive input possible."""

    pass


class InvalidConfiguration(AgentProvisioningError):
    """Option dependency violated or value malformed.

    Attributes:
        field: Name of the offending option (environment variable name)
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class PrerequisiteMissing(AgentProvisioningError):
    """Companion installer script or required binary not found."""

    pass


class ProvisioningFailed(AgentProvisioningError):
    """VM creation or remote execution failed.

    The collaborator's error text is preserved unmodified in ``detail``.
    """

    def __init__(self, step: str, detail: str):
        self.step = step
        self.detail = detail
        super().__init__(f"{step} failed: {detail}")
