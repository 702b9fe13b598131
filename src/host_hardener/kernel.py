"""Persistent kernel network-stack hardening."""

from pathlib import Path
from typing import Dict

import structlog

from host_hardener.exceptions import StageFailure
from host_hardener.utils.command import CommandExecutor
from host_hardener.utils.file import ArtifactStore

logger = structlog.get_logger(__name__)


def render_sysctl(parameters: Dict[str, str]) -> str:
    lines = ["# Network hardening (managed by host-hardener)"]
    lines += [f"{key} = {value}" for key, value in parameters.items()]
    return "\n".join(lines) + "\n"


class KernelHardener:
    """Write the sysctl drop-in and reload the parameter namespace."""

    def __init__(self, store: ArtifactStore, executor: CommandExecutor, path: Path, parameters: Dict[str, str]) -> None:
        self.store = store
        self.executor = executor
        self.path = path
        self.parameters = parameters

    def apply(self) -> None:
        """Write and reload.

        Raises:
            StageFailure: If the file cannot be written or the reload fails
        """
        logger.info("Applying kernel SYN-flood and network hardening", path=str(self.path))
        try:
            self.store.write_file(self.path, render_sysctl(self.parameters), mode=0o644)
        except OSError as e:
            raise StageFailure(f"Cannot write {self.path}: {e}") from e

        result = self.executor.execute("sysctl --system", check=False)
        if not result.success:
            raise StageFailure(f"sysctl reload failed: {result.stderr.strip()}")
