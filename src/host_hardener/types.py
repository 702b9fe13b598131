"""Type definitions for Host Hardener."""

from enum import Enum
from typing import NamedTuple, Optional


class InitSystem(str, Enum):
    """Supported init systems."""

    SYSTEMD = "systemd"
    UNKNOWN = "unknown"


class PackageManager(str, Enum):
    """Supported package managers."""

    APT = "apt"
    DNF = "dnf"
    NONE = "none"


class RootLoginPolicy(str, Enum):
    """Root login policy and the sshd value it maps to."""

    KEY_ONLY = "key-only"
    DISABLED = "disabled"
    ALLOWED = "allowed"

    @property
    def sshd_value(self) -> str:
        return {
            RootLoginPolicy.KEY_ONLY: "prohibit-password",
            RootLoginPolicy.DISABLED: "no",
            RootLoginPolicy.ALLOWED: "yes",
        }[self]


class StageStatus(str, Enum):
    """Terminal status of a pipeline stage."""

    SUCCEEDED = "succeeded"
    FAILED_FATAL = "failed-fatal"
    FAILED_RECOVERABLE = "failed-recoverable"
    SKIPPED = "skipped"


class ServiceState(str, Enum):
    """Live state of a managed daemon."""

    NOT_INSTALLED = "not-installed"
    INSTALLED_STOPPED = "installed-stopped"
    RUNNING = "running"
    RUNNING_VERIFIED = "running-verified"


class ServiceKey(str, Enum):
    """Managed services, declared in activation order."""

    FIREWALL = "firewall"
    SSH = "ssh"
    RATE_LIMITER = "rate-limiter"
    BAN_SERVICE = "ban-service"
    REPUTATION = "reputation"
    BOUNCER = "bouncer"


class FirewallState(str, Enum):
    """Firewall policy manager states."""

    UNCONFIGURED = "unconfigured"
    RESET = "reset"
    BASELINE = "default-deny baseline"
    ACTIVE_RULESET = "active-ruleset"
    ENFORCED = "enforced"


class CredentialOutcome(str, Enum):
    """Result of installing the administrative credential."""

    ADDED = "added"
    ALREADY_PRESENT = "already-present"


class CommandResult(NamedTuple):
    """Result of command execution."""

    success: bool
    stdout: str
    stderr: str
    return_code: int = 0


class BackupRecord(NamedTuple):
    """Backup taken before an artifact was first mutated in this run.

    ``backup_path`` is None when the artifact did not exist beforehand.
    """

    original_path: str
    backup_path: Optional[str]
    timestamp: str


class VerificationCheck(NamedTuple):
    """One verification result shown in the final report."""

    name: str
    passed: bool
    detail: str = ""
