"""Intrusion prevention: fail2ban SSH jail and CrowdSec bouncer."""

import shlex
from pathlib import Path
from typing import List

import structlog

from host_hardener.exceptions import StageFailure
from host_hardener.plan import HardeningPlan
from host_hardener.system_info import SystemInfo
from host_hardener.utils.command import CommandExecutor
from host_hardener.utils.file import ArtifactStore

logger = structlog.get_logger(__name__)


def render_jail(plan: HardeningPlan) -> str:
    policy = plan.ban_policy
    return f"""# fail2ban jail (managed by host-hardener)
[DEFAULT]
bantime = {policy.bantime}
findtime = {policy.findtime}
maxretry = {policy.maxretry}
backend = {policy.backend}
ignoreip = 127.0.0.1/8 ::1

[sshd]
enabled = true
port = {plan.admin_port}
"""


class BanServiceConfigurator:
    """Configure the fail2ban jail watching the administrative port."""

    def __init__(self, store: ArtifactStore, executor: CommandExecutor, system: SystemInfo, jail_path: Path) -> None:
        self.store = store
        self.executor = executor
        self.system = system
        self.jail_path = jail_path

    def configure(self, plan: HardeningPlan) -> None:
        """Write and test the jail definition.

        Raises:
            StageFailure: If fail2ban is missing or rejects the jail
        """
        logger.info("Configuring Fail2Ban for SSH", port=plan.admin_port)

        if not self.system.ensure_command("fail2ban-client", "fail2ban"):
            raise StageFailure("fail2ban is not installed and could not be installed")

        try:
            changed = self.store.write_file(self.jail_path, render_jail(plan), mode=0o644)
        except OSError as e:
            raise StageFailure(f"Cannot write {self.jail_path}: {e}") from e

        result = self.executor.execute("fail2ban-client -t", check=False)
        if not result.success:
            if changed:
                self.store.revert([self.jail_path])
            raise StageFailure(f"fail2ban rejected the jail: {result.stderr.strip()}")


class ReputationInstaller:
    """Install the CrowdSec engine and its firewall bouncer."""

    def __init__(self, executor: CommandExecutor, system: SystemInfo, install_script_url: str, packages: List[str]) -> None:
        self.executor = executor
        self.system = system
        self.install_script_url = install_script_url
        self.packages = packages

    def install(self) -> None:
        """Add the package repository and install the packages.

        Raises:
            StageFailure: If any installation step fails
        """
        if self.executor.check_command_available("cscli"):
            logger.info("CrowdSec already installed")
            return

        logger.info("Installing CrowdSec and firewall bouncer", packages=self.packages)
        self.system.ensure_command("curl", "curl")

        repo = self.executor.execute(
            f"bash -c {shlex.quote(f'set -o pipefail; curl -fsSL {self.install_script_url} | bash')}",
            check=False,
            timeout=300,
        )
        if not repo.success:
            raise StageFailure(f"CrowdSec repository setup failed: {repo.stderr.strip()}")

        # The repository script adds a new source, so the index must refresh.
        self.system.refresh_package_index()
        if not self.system.install_packages(*self.packages):
            raise StageFailure(f"Installing {', '.join(self.packages)} failed")
