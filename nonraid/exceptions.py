"""Exceptions raised by the NonRAID array management layer."""

from typing import Optional


class NonRAIDError(Exception):
    """Base exception for NonRAID array management."""


class ValidationError(NonRAIDError):
    """Raised when a request is malformed (bad disk selection, bad share mode)."""


class ToolUnavailable(NonRAIDError):
    """Raised when an expected external binary cannot be invoked."""

    def __init__(self, binary: str):
        super().__init__(f"Required tool not available: {binary}")
        self.binary = binary


class ExternalCommandFailure(NonRAIDError):
    """Raised when an external command exits non-zero or times out."""

    def __init__(self, command: str, returncode: Optional[int], stderr: str = ""):
        detail = stderr.strip().splitlines()[-1] if stderr and stderr.strip() else ""
        message = f"Command failed ({returncode}): {command}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class ParseError(NonRAIDError):
    """Raised when external tool output does not have the expected shape."""


class StatusQueryFailed(NonRAIDError):
    """Raised when the array tool's structured status cannot be obtained."""


class AlreadyRunning(NonRAIDError):
    """Raised when a parity check is requested while one is in progress."""


class ProvisioningInProgress(NonRAIDError):
    """Raised when provisioning or another array operation is already running."""


class ProvisioningCancelled(NonRAIDError):
    """Raised inside the pipeline once cancellation has been requested."""


class ShareConfigError(NonRAIDError):
    """Raised when the share configuration cannot be rendered or installed."""
