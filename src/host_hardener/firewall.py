"""Firewall policy manager backed by ufw."""

import re
import shlex
from typing import FrozenSet, List, Set

import structlog

from host_hardener.exceptions import HardenerError
from host_hardener.plan import HardeningPlan
from host_hardener.system_info import SystemInfo
from host_hardener.types import FirewallState
from host_hardener.utils.command import CommandExecutor

logger = structlog.get_logger(__name__)

_RULE_RE = re.compile(
    r"^(?P<port>\d+)(?:/(?P<proto>tcp|udp))?(?: \(v6\))?\s+(?:ALLOW|LIMIT)(?: IN)?\s+(?P<source>.+?)(?:\s+#.*)?$"
)


class FirewallManager:
    """Build a default-deny ruleset; enabling it is left to the activator.

    States move ``unconfigured -> reset -> baseline -> active-ruleset`` here
    and ``-> enforced`` once the activator runs ``ufw --force enable``.
    """

    def __init__(self, executor: CommandExecutor, system: SystemInfo, legacy_app_profiles: List[str]) -> None:
        self.executor = executor
        self.system = system
        self.legacy_app_profiles = legacy_app_profiles
        self.state = FirewallState.UNCONFIGURED

    def configure(self, plan: HardeningPlan) -> None:
        """Assemble the ruleset for ``plan``.

        Raises:
            HardenerError: If ufw is unavailable or a required rule fails
        """
        logger.info("Setting up firewall", admin_port=plan.admin_port)

        if not self.system.ensure_command("ufw", "ufw"):
            raise HardenerError("ufw is not installed and could not be installed")

        self.executor.execute("ufw --force reset")
        self.state = FirewallState.RESET

        self.executor.execute("ufw default deny incoming")
        self.executor.execute("ufw default allow outgoing")
        self.state = FirewallState.BASELINE

        # Admin port first: no later step may run without it allowed.
        self.executor.execute(f"ufw allow {plan.admin_port}/tcp comment 'SSH {plan.admin_port}'")
        for service in sorted(plan.service_ports, key=lambda s: (s.port, s.protocol)):
            self.executor.execute(f"ufw allow {service} comment 'service {service}'")
        for source in plan.trusted_sources:
            self.executor.execute(f"ufw allow from {shlex.quote(source)} comment 'trusted source'")

        for port in sorted(plan.retired_ports):
            self._delete_rule(f"allow {port}/tcp")
        for profile in self.legacy_app_profiles:
            self._delete_rule(f"allow {shlex.quote(profile)}")

        self.state = FirewallState.ACTIVE_RULESET
        logger.info("Firewall ruleset assembled", state=self.state.value)

    def _delete_rule(self, rule: str) -> None:
        result = self.executor.execute(f"ufw delete {rule}", check=False)
        if result.success:
            logger.info("Removed legacy firewall rule", rule=rule)
        else:
            logger.debug("Legacy firewall rule not present", rule=rule)

    def mark_enforced(self) -> None:
        self.state = FirewallState.ENFORCED

    def allowed_ports(self) -> FrozenSet[str]:
        """Ports allowed from anywhere according to ``ufw status``."""
        result = self.executor.execute("ufw status", check=False)
        return parse_ufw_status(result.stdout)


def parse_ufw_status(output: str) -> FrozenSet[str]:
    """Extract ``PORT/PROTO`` entries from ``ufw status`` output.

    IPv6 duplicates collapse into the same entry, rules restricted to a
    source address are ignored.
    """
    ports: Set[str] = set()
    for line in output.splitlines():
        match = _RULE_RE.match(line.strip())
        if not match or not match.group("source").startswith("Anywhere"):
            continue
        proto = match.group("proto")
        if proto:
            ports.add(f"{match.group('port')}/{proto}")
        else:
            ports.update({f"{match.group('port')}/tcp", f"{match.group('port')}/udp"})
    return frozenset(ports)
