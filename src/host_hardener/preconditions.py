"""Pre-flight checks that run before anything on the host is touched."""

import pwd
from typing import FrozenSet, Optional

import structlog

from host_hardener.config import HardenerConfig
from host_hardener.exceptions import PreconditionError
from host_hardener.plan import HardeningPlan, authorized_keys_path
from host_hardener.system_info import SystemInfo
from host_hardener.types import RootLoginPolicy
from host_hardener.utils.validation import Validator

logger = structlog.get_logger(__name__)


class PreconditionValidator:
    """Gate the run on privilege, credential and host capabilities."""

    def __init__(self, config: HardenerConfig, system: SystemInfo, dry_run: bool = False) -> None:
        self.config = config
        self.system = system
        self.dry_run = dry_run

    def validate(
        self,
        credential: Optional[str],
        port: Optional[int] = None,
        previous_ports: FrozenSet[int] = frozenset(),
    ) -> HardeningPlan:
        """Check every precondition and build the run's plan.

        Args:
            credential: Public key given on the command line
            port: Administrative port given on the command line
            previous_ports: Ports sshd is configured for before this run

        Returns:
            The immutable plan for this run

        Raises:
            PreconditionError: If the run cannot safely start
        """
        if not self.system.is_root:
            if not self.dry_run:
                raise PreconditionError("Run as root (sudo).")
            logger.warning("Not running as root; dry run continues")

        Validator.validate_public_key(credential or "")

        issues = self.system.check_requirements(self.config.ssh.config_path)
        if issues:
            raise PreconditionError("; ".join(issues))

        plan = HardeningPlan.from_config(self.config, credential, port=port, previous_ports=previous_ports)

        self._check_account(plan)
        authorized_keys_path(self.config)

        logger.info(
            "Preconditions satisfied",
            admin_port=plan.admin_port,
            retired_ports=sorted(plan.retired_ports),
        )
        return plan

    def _check_account(self, plan: HardeningPlan) -> None:
        """The key must land in an account that can still log in afterwards."""
        try:
            pwd.getpwnam(plan.admin_user)
        except KeyError as e:
            raise PreconditionError(f"Administrative account does not exist: {plan.admin_user}") from e

        if plan.admin_user == "root" and plan.root_login == RootLoginPolicy.DISABLED:
            raise PreconditionError(
                "Root login would be disabled while the key is installed for root. "
                "Set ssh.admin_user to another account or choose --root-login key-only."
            )
