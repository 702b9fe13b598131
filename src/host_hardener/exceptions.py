"""Custom exceptions for Host Hardener."""


class HardenerError(Exception):
    """Base exception for all hardener errors."""

    pass


class ConfigurationError(HardenerError):
    """Raised when configuration is invalid."""

    pass


class PreconditionError(HardenerError):
    """Raised before any mutation when the run cannot safely start."""

    pass


class ConfigValidationError(HardenerError):
    """Raised when a rewritten configuration fails its own validator."""

    pass


class StageFailure(HardenerError):
    """Raised by stages whose failure does not affect reachability."""

    pass


class VerificationMismatch(HardenerError):
    """Raised when the live host state differs from the plan."""

    pass


class CommandExecutionError(HardenerError):
    """Raised when command execution fails."""

    pass


class ServiceControlError(HardenerError):
    """Raised when service control operation fails."""

    pass
