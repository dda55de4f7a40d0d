"""Domain errors for DeskFleet."""

from typing import Optional, Sequence


class FleetError(RuntimeError):
    """Raised when a fleet operation cannot continue safely."""


class ConfigError(FleetError):
    """Invalid fleet specification or port arithmetic. Always fatal."""


class HostEnvironmentError(FleetError):
    """A required host capability (firewall control, docker, root) is unavailable."""

    def __init__(self, message: str, hint: Optional[str] = None):
        self.hint = hint
        if hint:
            message = f"{message} Suggested action: {hint}"
        super().__init__(message)


class CommandError(FleetError):
    """An external command failed, timed out or exited non-zero."""

    def __init__(
        self,
        message: str,
        cmd: Sequence[str] = (),
        returncode: Optional[int] = None,
        stderr: str = "",
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.cmd = tuple(cmd)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out


class ContainerRuntimeError(FleetError):
    """A container runtime call failed for a given operation and target."""

    def __init__(self, operation: str, target: Optional[str], cause: Exception):
        self.operation = operation
        self.target = target or "all"
        self.cause = cause
        super().__init__(f"Container runtime '{operation}' failed for {self.target}: {cause}")


class ExternalServiceError(FleetError):
    """The DNS provider or an address-discovery source failed."""

    def __init__(self, service: str, operation: str, message: str):
        self.service = service
        self.operation = operation
        super().__init__(f"{service} {operation} failed: {message}")


class NotFoundError(FleetError):
    """An operation addressed a worker that does not exist or is not running."""
