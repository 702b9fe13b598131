"""Command execution utilities."""

import subprocess
from typing import List

import structlog

from host_hardener.exceptions import CommandExecutionError
from host_hardener.types import CommandResult

logger = structlog.get_logger(__name__)


class CommandExecutor:
    """Execute system commands with proper error handling."""

    def __init__(self, dry_run: bool = False) -> None:
        """Initialize command executor.

        Args:
            dry_run: If True, only log commands without executing
        """
        self.dry_run = dry_run
        self.history: List[str] = []

    def execute(
        self,
        cmd: str,
        check: bool = True,
        timeout: int = 30,
    ) -> CommandResult:
        """Execute a shell command.

        Args:
            cmd: Command to execute
            check: Whether to raise exception on failure
            timeout: Command timeout in seconds

        Returns:
            CommandResult with execution details

        Raises:
            CommandExecutionError: If command fails and check=True
        """
        self.history.append(cmd)
        logger.debug("Executing command", cmd=cmd, dry_run=self.dry_run)

        if self.dry_run:
            return CommandResult(True, f"[DRY RUN] {cmd}", "", 0)

        result = self._spawn(cmd, timeout)
        if check and not result.success:
            raise CommandExecutionError(
                f"Command failed: {cmd}\nError: {result.stderr.strip()}"
            )
        return result

    def _spawn(self, cmd: str, timeout: int) -> CommandResult:
        try:
            result = subprocess.run(
                cmd,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(False, "", f"Command timed out after {timeout}s: {cmd}", -1)
        except OSError as e:
            return CommandResult(False, "", f"Command execution failed: {cmd}\nError: {e}", -1)

        return CommandResult(
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            return_code=result.returncode,
        )

    def check_command_available(self, command: str) -> bool:
        """Check if command is available on system."""
        if self.dry_run:
            return True
        result = self._spawn(f"command -v {command}", timeout=10)
        return result.success
