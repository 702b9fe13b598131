"""System information detection for Host Hardener."""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog

from host_hardener.types import InitSystem, PackageManager
from host_hardener.utils.command import CommandExecutor

logger = structlog.get_logger(__name__)


class SystemInfo:
    """Detect and store host capabilities."""

    def __init__(self, executor: CommandExecutor, os_release: Path = Path("/etc/os-release")) -> None:
        """Initialize system information detection.

        Args:
            executor: Executor used for probing commands
            os_release: Path of the os-release file
        """
        self.executor = executor
        self.distro = self._detect_distro(os_release)
        self.package_manager = self._detect_package_manager()
        self.init_system = self._detect_init_system()
        self.is_root = os.geteuid() == 0
        self._ssh_unit: Optional[str] = None
        self._apt_updated = False

    def _detect_distro(self, os_release: Path) -> str:
        """Detect Linux distribution."""
        if not os_release.exists():
            return "unknown"

        with open(os_release) as f:
            for line in f:
                if line.startswith("ID="):
                    return line.split("=")[1].strip().strip('"').lower()
        return "unknown"

    def _detect_package_manager(self) -> PackageManager:
        """Detect available package manager."""
        for cmd, pm_type in (("apt-get", PackageManager.APT), ("dnf", PackageManager.DNF)):
            if self.executor.check_command_available(cmd):
                return pm_type
        return PackageManager.NONE

    def _detect_init_system(self) -> InitSystem:
        if self.executor.check_command_available("systemctl"):
            return InitSystem.SYSTEMD
        return InitSystem.UNKNOWN

    def get_package_install_command(self, *packages: str) -> str:
        """Get package installation command for this system."""
        names = " ".join(packages)
        commands = {
            PackageManager.APT: f"DEBIAN_FRONTEND=noninteractive apt-get install -y {names}",
            PackageManager.DNF: f"dnf install -y {names}",
        }
        return commands.get(self.package_manager, "")

    def install_packages(self, *packages: str) -> bool:
        """Install packages using the system package manager.

        Returns:
            True if installation succeeded
        """
        cmd = self.get_package_install_command(*packages)
        if not cmd:
            logger.error("No package manager available", packages=packages)
            return False

        if not self._apt_updated:
            self.refresh_package_index()

        result = self.executor.execute(cmd, check=False, timeout=600)
        if not result.success:
            logger.error("Package installation failed", packages=packages, error=result.stderr.strip())
        return result.success

    def refresh_package_index(self) -> None:
        """Refresh the apt package index (no-op for dnf, which refreshes itself)."""
        if self.package_manager == PackageManager.APT:
            self.executor.execute("apt-get update -y", check=False, timeout=300)
            self._apt_updated = True

    def ensure_command(self, command: str, package: str) -> bool:
        """Install ``package`` unless ``command`` is already available."""
        if self.executor.check_command_available(command):
            return True
        logger.info("Installing missing tool", command=command, package=package)
        return self.install_packages(package)

    def ssh_unit(self) -> str:
        """Detect the SSH service unit name (``ssh`` on Debian, ``sshd`` elsewhere)."""
        if self._ssh_unit:
            return self._ssh_unit

        for name in ("ssh", "sshd"):
            result = self.executor.execute(
                f"systemctl list-unit-files {name}.service --no-legend", check=False
            )
            if result.success and result.stdout.strip().startswith(f"{name}.service"):
                self._ssh_unit = name
                return name

        self._ssh_unit = "sshd"
        return self._ssh_unit

    def ssh_socket_activated(self) -> bool:
        """True when sshd is started through ``ssh.socket`` (Ubuntu 22.10+)."""
        result = self.executor.execute("systemctl is-enabled ssh.socket", check=False)
        return result.success and result.stdout.strip() == "enabled"

    def ssh_restart_commands(self) -> Tuple[str, ...]:
        """Commands that make sshd pick up a new configuration."""
        unit = self.ssh_unit()
        if self.ssh_socket_activated():
            return (
                "systemctl daemon-reload",
                "systemctl restart ssh.socket",
                f"systemctl restart {unit}",
            )
        return (f"systemctl restart {unit}",)

    def check_requirements(self, sshd_config: Path) -> List[str]:
        """Check if system meets minimum requirements."""
        issues: List[str] = []

        if self.package_manager == PackageManager.NONE:
            issues.append("No supported package manager found (need apt-get or dnf)")

        if not sshd_config.exists():
            issues.append(f"SSH config not found at {sshd_config}")

        if self.init_system == InitSystem.UNKNOWN:
            issues.append("systemd is required to manage services")

        return issues

    def to_dict(self) -> Dict[str, str]:
        """Convert system info to dictionary."""
        return {
            "distro": self.distro,
            "package_manager": self.package_manager.value,
            "init_system": self.init_system.value,
            "is_root": str(self.is_root),
        }
