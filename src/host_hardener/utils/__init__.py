"""Utility modules for Host Hardener."""

from host_hardener.utils.command import CommandExecutor
from host_hardener.utils.file import ArtifactStore
from host_hardener.utils.validation import Validator

__all__ = ["CommandExecutor", "ArtifactStore", "Validator"]
