"""Tests for service activation and verification."""

import pytest

from host_hardener.config import HardenerConfig
from host_hardener.plan import HardeningPlan
from host_hardener.services import ACTIVATION_ORDER, ManagedService, ServiceActivator, Verifier, parse_listening_ports
from host_hardener.types import ServiceKey, ServiceState

SS_OUTPUT = """\
LISTEN 0      128          0.0.0.0:2218       0.0.0.0:*
LISTEN 0      511          0.0.0.0:80         0.0.0.0:*
LISTEN 0      128             [::]:2218          [::]:*
LISTEN 0      4096   127.0.0.53%lo:53         0.0.0.0:*
"""


@pytest.fixture
def plan(public_key) -> HardeningPlan:
    return HardeningPlan.from_config(HardenerConfig.from_env(), public_key, port=2218)


@pytest.fixture
def activator(executor) -> ServiceActivator:
    activator = ServiceActivator(executor)
    activator.register(ManagedService(ServiceKey.SSH, "ssh", ("systemctl restart ssh",)))
    activator.register(ManagedService(ServiceKey.FIREWALL, "ufw", ("ufw --force enable",)))
    return activator


def test_activation_order_puts_firewall_before_ssh():
    """Test the dependency order of managed services."""
    assert ACTIVATION_ORDER.index(ServiceKey.FIREWALL) < ACTIVATION_ORDER.index(ServiceKey.SSH)
    assert ACTIVATION_ORDER.index(ServiceKey.SSH) < ACTIVATION_ORDER.index(ServiceKey.BAN_SERVICE)
    assert ACTIVATION_ORDER.index(ServiceKey.REPUTATION) < ACTIVATION_ORDER.index(ServiceKey.BOUNCER)


def test_activate_runs_in_order_regardless_of_registration(activator, executor):
    """Test that the firewall comes up before sshd restarts."""
    assert activator.activate() == []
    assert executor.index("ufw --force enable") < executor.index("systemctl restart ssh")
    assert activator.states[ServiceKey.SSH] == ServiceState.RUNNING
    assert activator.states[ServiceKey.BAN_SERVICE] == ServiceState.NOT_INSTALLED


def test_registration_marks_installed(executor):
    """Test the not-installed to installed-stopped transition."""
    activator = ServiceActivator(executor)
    activator.register(ManagedService(ServiceKey.BAN_SERVICE, "fail2ban", ("systemctl restart fail2ban",)))
    assert activator.states[ServiceKey.BAN_SERVICE] == ServiceState.INSTALLED_STOPPED


def test_activation_failure_is_recorded(activator, executor):
    """Test that one failing service does not stop the others."""
    executor.respond("ufw --force enable", success=False, stderr="problem running iptables")
    failures = activator.activate()

    assert len(failures) == 1 and "firewall" in failures[0]
    assert activator.states[ServiceKey.FIREWALL] == ServiceState.INSTALLED_STOPPED
    assert activator.states[ServiceKey.SSH] == ServiceState.RUNNING


def test_parse_listening_ports():
    """Test extraction of ports from ``ss`` output."""
    assert parse_listening_ports(SS_OUTPUT) == frozenset({2218, 80, 53})


def test_verify_passes_and_marks_verified(activator, executor, plan):
    """Test a host that matches the plan."""
    executor.respond("ss -H -tln", stdout=SS_OUTPUT)
    activator.activate()
    verifier = Verifier(executor, activator)

    verifier.verify(plan, frozenset({"2218/tcp", "80/tcp", "443/tcp"}))

    assert verifier.mismatches == []
    assert activator.states[ServiceKey.SSH] == ServiceState.RUNNING_VERIFIED
    assert activator.states[ServiceKey.FIREWALL] == ServiceState.RUNNING_VERIFIED


def test_verify_reports_stale_port(activator, executor, plan):
    """Test that sshd still bound to port 22 is a mismatch."""
    executor.respond("ss -H -tln", stdout=SS_OUTPUT + "LISTEN 0 128 0.0.0.0:22 0.0.0.0:*\n")
    activator.activate()
    verifier = Verifier(executor, activator)

    verifier.verify(plan, frozenset({"2218/tcp", "80/tcp", "443/tcp"}))

    names = {check.name for check in verifier.mismatches}
    assert "no legacy SSH port bound" in names
    assert "ssh running" in names
    assert activator.states[ServiceKey.SSH] == ServiceState.RUNNING


def test_verify_reports_firewall_drift(activator, executor, plan):
    """Test that extra firewall ports are a mismatch."""
    executor.respond("ss -H -tln", stdout=SS_OUTPUT)
    activator.activate()
    verifier = Verifier(executor, activator)

    verifier.verify(plan, frozenset({"2218/tcp", "80/tcp", "443/tcp", "22/tcp"}))

    assert [check.name for check in verifier.mismatches] == ["firewall exposes exactly the planned ports"]


def test_verify_collects_status_notes(executor, plan):
    """Test that ban-service status is captured for the report."""
    executor.respond("ss -H -tln", stdout=SS_OUTPUT)
    executor.respond("fail2ban-client status sshd", stdout="Status for the jail: sshd\n")
    activator = ServiceActivator(executor)
    activator.register(ManagedService(ServiceKey.BAN_SERVICE, "fail2ban", ("systemctl restart fail2ban",)))
    activator.activate()
    verifier = Verifier(executor, activator)

    verifier.verify(plan, None)

    assert verifier.status_notes == {"fail2ban-client status sshd": "Status for the jail: sshd"}
