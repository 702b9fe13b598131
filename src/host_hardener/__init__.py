"""Host Hardener - SSH, firewall and intrusion prevention for Linux servers."""

__version__ = "1.0.0"
__author__ = "DevOps Team"
__license__ = "MIT"

from host_hardener.exceptions import (
    ConfigurationError,
    ConfigValidationError,
    HardenerError,
    PreconditionError,
    StageFailure,
    VerificationMismatch,
)
from host_hardener.hardener import HostHardener
from host_hardener.report import HardeningReport
from host_hardener.system_info import SystemInfo

__all__ = [
    "HostHardener",
    "HardeningReport",
    "SystemInfo",
    "HardenerError",
    "ConfigurationError",
    "ConfigValidationError",
    "PreconditionError",
    "StageFailure",
    "VerificationMismatch",
]
