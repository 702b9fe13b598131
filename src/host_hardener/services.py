"""Service activation in dependency order and post-run verification."""

import re
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Set, Tuple

import structlog

from host_hardener.exceptions import ServiceControlError
from host_hardener.plan import HardeningPlan
from host_hardener.types import ServiceKey, ServiceState, VerificationCheck
from host_hardener.utils.command import CommandExecutor

logger = structlog.get_logger(__name__)

ACTIVATION_ORDER: Tuple[ServiceKey, ...] = tuple(ServiceKey)

_LISTEN_RE = re.compile(r"^LISTEN\s+\d+\s+\d+\s+(?P<local>\S+)\s+\S+")


class ManagedService(NamedTuple):
    """A daemon a committed stage handed over for activation."""

    key: ServiceKey
    unit: str
    commands: Tuple[str, ...]
    probe: str = ""


class ServiceActivator:
    """Owns the ServiceState of every managed daemon.

    Stages register a service once their configuration is committed;
    ``activate`` then starts everything in ``ACTIVATION_ORDER`` so that the
    firewall is enforced before sshd moves ports and the rate limiter and
    ban service come up behind it.
    """

    def __init__(self, executor: CommandExecutor) -> None:
        self.executor = executor
        self.registered: Dict[ServiceKey, ManagedService] = {}
        self.states: Dict[ServiceKey, ServiceState] = {key: ServiceState.NOT_INSTALLED for key in ServiceKey}
        self.failures: Dict[ServiceKey, str] = {}

    def register(self, service: ManagedService) -> None:
        self.registered[service.key] = service
        self.states[service.key] = ServiceState.INSTALLED_STOPPED

    def activate(self) -> List[str]:
        """Run activation commands in dependency order.

        Returns:
            Failure messages, one per service that did not come up
        """
        messages: List[str] = []
        for key in ACTIVATION_ORDER:
            service = self.registered.get(key)
            if service is None:
                continue
            try:
                self._run(service)
            except ServiceControlError as e:
                self.failures[key] = str(e)
                messages.append(str(e))
                logger.error("Service activation failed", service=key.value, error=str(e))
                continue
            self.states[key] = ServiceState.RUNNING
            logger.info("Service activated", service=key.value, unit=service.unit)
        return messages

    def _run(self, service: ManagedService) -> None:
        for cmd in service.commands:
            result = self.executor.execute(cmd, check=False, timeout=120)
            if not result.success:
                raise ServiceControlError(f"{service.key.value}: '{cmd}' failed: {result.stderr.strip()}")

    def mark_verified(self, key: ServiceKey) -> None:
        if self.states[key] == ServiceState.RUNNING:
            self.states[key] = ServiceState.RUNNING_VERIFIED


def parse_listening_ports(output: str) -> FrozenSet[int]:
    """Extract local ports from ``ss -H -tln`` output."""
    ports: Set[int] = set()
    for line in output.splitlines():
        match = _LISTEN_RE.match(line.strip())
        if not match:
            continue
        _, _, port = match.group("local").rpartition(":")
        if port.isdigit():
            ports.add(int(port))
    return frozenset(ports)


class Verifier:
    """Compare the live host with the plan; never changes anything."""

    def __init__(self, executor: CommandExecutor, activator: ServiceActivator) -> None:
        self.executor = executor
        self.activator = activator
        self.checks: List[VerificationCheck] = []
        self.status_notes: Dict[str, str] = {}

    def verify(self, plan: HardeningPlan, firewall_ports: Optional[FrozenSet[str]]) -> List[VerificationCheck]:
        """Run all checks.

        Args:
            plan: The run's plan
            firewall_ports: Ports ufw allows from anywhere, None if unknown

        Returns:
            All checks, passed or not
        """
        self.checks = []
        listening = parse_listening_ports(self.executor.execute("ss -H -tln", check=False).stdout)

        self._check(
            f"admin port {plan.admin_port} listening",
            plan.admin_port in listening,
            f"listening: {sorted(listening)}",
        )
        stale = sorted(listening & plan.retired_ports)
        self._check("no legacy SSH port bound", not stale, f"still bound: {stale}" if stale else "")

        if firewall_ports is not None:
            expected = {str(port) for port in plan.exposed_ports}
            self._check(
                "firewall exposes exactly the planned ports",
                set(firewall_ports) == expected,
                f"expected {sorted(expected)}, found {sorted(firewall_ports)}",
            )

        for key, service in self.activator.registered.items():
            if self.activator.states[key] != ServiceState.RUNNING:
                continue
            probe = service.probe or f"systemctl is-active {service.unit}"
            ok = self.executor.execute(probe, check=False).success
            if key == ServiceKey.SSH:
                ok = ok and plan.admin_port in listening and not stale
            self._check(f"{key.value} running", ok, service.unit)
            if ok:
                self.activator.mark_verified(key)

        self._collect_status(ServiceKey.BAN_SERVICE, "fail2ban-client status sshd")
        self._collect_status(ServiceKey.REPUTATION, "cscli metrics")
        return self.checks

    def _check(self, name: str, passed: bool, detail: str = "") -> None:
        self.checks.append(VerificationCheck(name=name, passed=passed, detail=detail))
        if passed:
            logger.info("Verification passed", check=name)
        else:
            logger.error("Verification mismatch", check=name, detail=detail)

    def _collect_status(self, key: ServiceKey, cmd: str) -> None:
        if self.activator.states[key] not in (ServiceState.RUNNING, ServiceState.RUNNING_VERIFIED):
            return
        result = self.executor.execute(cmd, check=False)
        self.status_notes[cmd] = (result.stdout or result.stderr).strip()

    @property
    def mismatches(self) -> List[VerificationCheck]:
        return [check for check in self.checks if not check.passed]
