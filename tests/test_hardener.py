"""End-to-end tests of the hardening pipeline against a temporary host tree."""

import json

import pytest

from conftest import UBUNTU_SSHD_CONFIG, FakeExecutor
from host_hardener.hardener import HostHardener
from host_hardener.sshd import SshdConfig
from host_hardener.types import CredentialOutcome, RootLoginPolicy, ServiceKey, ServiceState, StageStatus

UFW_STATUS = """\
Status: active

To                         Action      From
--                         ------      ----
2218/tcp                   ALLOW       Anywhere                   # SSH 2218
80/tcp                     ALLOW       Anywhere                   # service 80/tcp
443/tcp                    ALLOW       Anywhere                   # service 443/tcp
"""


@pytest.fixture
def host_executor(executor: FakeExecutor) -> FakeExecutor:
    """Executor scripted like an Ubuntu host after the changes took effect."""
    executor.respond("systemctl list-unit-files ssh.service", stdout="ssh.service enabled enabled\n")
    executor.respond(
        "ufw show added",
        stdout="Added user rules (see 'ufw status' for running firewall):\nufw allow 2218/tcp comment 'SSH 2218'\n",
    )
    executor.respond("ufw status", stdout=UFW_STATUS)
    executor.respond("ss -H -tln", stdout="LISTEN 0 128 0.0.0.0:2218 0.0.0.0:*\nLISTEN 0 128 [::]:2218 [::]:*\n")
    return executor


@pytest.fixture
def hardener(test_config, public_key, host_executor, system) -> HostHardener:
    return HostHardener(test_config, public_key, port=2218, executor=host_executor, system=system)


def test_full_run(hardener, test_config, public_key, host_executor):
    """Test the documented scenario: ed25519 key and port 2218."""
    report = hardener.run()

    assert report.fatal is None
    assert report.complete
    assert report.credential_outcome == CredentialOutcome.ADDED

    keys = test_config.ssh.authorized_keys.read_text().splitlines()
    assert keys.count(public_key) == 1

    sshd = SshdConfig.load(test_config.ssh.config_path)
    assert sshd.ports() == [2218]
    assert [line.value for line in sshd.directives("passwordauthentication")] == ["no"]
    assert [line.value for line in sshd.directives("permitrootlogin")] == ["prohibit-password"]

    assert not host_executor.ran("ufw allow 22/tcp")
    assert report.services[ServiceKey.SSH] == ServiceState.RUNNING_VERIFIED
    assert all(check.passed for check in report.checks)


def test_admin_rule_precedes_ssh_restart(hardener, host_executor):
    """Test that sshd never moves before the firewall admits the new port."""
    hardener.run()

    restart = host_executor.index("systemctl restart ssh")
    assert host_executor.index("ufw allow 2218/tcp") < restart
    assert host_executor.index("ufw --force enable") < restart
    assert host_executor.index("sshd -t -f") < restart


def test_backups_hold_pre_run_content(hardener, test_config):
    """Test that each mutated artifact has a backup of its previous content."""
    report = hardener.run()

    by_path = {b.original_path: b for b in report.backups}
    sshd_backup = by_path[str(test_config.ssh.config_path)]
    assert open(sshd_backup.backup_path).read() == UBUNTU_SSHD_CONFIG
    assert by_path[str(test_config.kernel.path)].backup_path is None


def test_manifest_written(hardener, test_config):
    """Test that a run manifest is left next to the backups."""
    hardener.run()

    manifests = list(test_config.backup.directory.glob("run-*.json"))
    assert len(manifests) == 1
    manifest = json.loads(manifests[0].read_text())
    assert manifest["admin_port"] == 2218
    assert manifest["stages"]["ssh-policy"] == "succeeded"


def test_rerun_is_idempotent(test_config, public_key, host_executor, system):
    """Test that a second run adds nothing and rewrites nothing."""
    HostHardener(test_config, public_key, port=2218, executor=host_executor, system=system).run()
    sshd_text = test_config.ssh.config_path.read_text()
    jail_text = test_config.ban.jail_path.read_text()

    report = HostHardener(test_config, public_key, port=2218, executor=host_executor, system=system).run()

    assert report.fatal is None
    assert report.credential_outcome == CredentialOutcome.ALREADY_PRESENT
    assert test_config.ssh.authorized_keys.read_text().splitlines().count(public_key) == 1
    assert test_config.ssh.config_path.read_text() == sshd_text
    assert test_config.ban.jail_path.read_text() == jail_text
    assert [b for b in report.backups if b.backup_path] == []


def test_rejected_sshd_config_stops_before_activation(hardener, host_executor, test_config):
    """Test that a configuration sshd rejects never reaches the daemon."""
    host_executor.respond("sshd -t", success=False, stderr="/etc/ssh/sshd_config line 14: Bad configuration option")

    report = hardener.run()

    assert report.fatal.name == "ssh-policy"
    assert "Bad configuration option" in report.fatal.detail
    assert test_config.ssh.config_path.read_text() == UBUNTU_SSHD_CONFIG
    assert not host_executor.ran("systemctl restart ssh")
    assert not host_executor.ran("ufw --force reset")
    assert report.result.status_of("service-activation") == StageStatus.SKIPPED


def test_second_effective_port_stops_before_activation(hardener, host_executor, test_config):
    """Test that sshd is not restarted while an included file keeps another port."""
    host_executor.respond("sshd -T", stdout="port 2218\nport 2200\n")

    report = hardener.run()

    assert report.fatal.name == "ssh-policy"
    assert "2200" in report.fatal.detail
    assert test_config.ssh.config_path.read_text() == UBUNTU_SSHD_CONFIG
    assert not host_executor.ran("systemctl restart ssh")
    assert report.result.status_of("service-activation") == StageStatus.SKIPPED


def test_malformed_credential_mutates_nothing(test_config, host_executor, system):
    """Test that a bad key is rejected before any change."""
    report = HostHardener(test_config, "ssh-ed25519 garbage", port=2218, executor=host_executor, system=system).run()

    assert report.fatal.name == "preconditions"
    assert not test_config.ssh.authorized_keys.exists()
    assert test_config.ssh.config_path.read_text() == UBUNTU_SSHD_CONFIG
    assert not host_executor.ran("ufw")
    assert report.backups == []


def test_missing_port_is_fatal(test_config, public_key, host_executor, system):
    """Test that a run without any configured port stops at preconditions."""
    report = HostHardener(test_config, public_key, executor=host_executor, system=system).run()
    assert report.fatal.name == "preconditions"
    assert "No administrative port" in report.fatal.detail


def test_non_root_is_fatal(hardener, system, test_config):
    """Test the privilege precondition."""
    system.is_root = False
    report = hardener.run()
    assert report.fatal.name == "preconditions"
    assert not test_config.ssh.authorized_keys.exists()


def test_root_lockout_is_fatal(test_config, public_key, host_executor, system):
    """Test that a key for root with root login disabled stops before any change."""
    test_config.ssh.root_login = RootLoginPolicy.DISABLED
    report = HostHardener(test_config, public_key, port=2218, executor=host_executor, system=system).run()

    assert report.fatal.name == "preconditions"
    assert "Root login would be disabled" in report.fatal.detail
    assert not test_config.ssh.authorized_keys.exists()
    assert test_config.ssh.config_path.read_text() == UBUNTU_SSHD_CONFIG
    assert not host_executor.ran("systemctl restart ssh")


def test_unknown_account_with_keys_override_is_fatal(test_config, public_key, host_executor, system):
    """Test that a missing account ends in a report even when authorized_keys is overridden."""
    test_config.ssh.admin_user = "no-such-user-hh"
    report = HostHardener(test_config, public_key, port=2218, executor=host_executor, system=system).run()

    assert report.fatal.name == "preconditions"
    assert "does not exist" in report.fatal.detail
    assert not test_config.ssh.authorized_keys.exists()


def test_non_utf8_authorized_keys_is_fatal(hardener, test_config, host_executor):
    """Test that an undecodable authorized_keys stops the run with a report."""
    test_config.ssh.authorized_keys.parent.mkdir()
    test_config.ssh.authorized_keys.write_bytes(b"ssh-rsa AAAA caf\xe9\n")

    report = hardener.run()

    assert report.fatal.name == "credential"
    assert "not valid UTF-8" in report.fatal.detail
    assert test_config.ssh.config_path.read_text() == UBUNTU_SSHD_CONFIG
    assert not host_executor.ran("systemctl restart ssh")


def test_non_utf8_sshd_config_is_fatal(hardener, test_config):
    """Test that an undecodable sshd_config stops the run with a report."""
    test_config.ssh.config_path.write_bytes(b"Port 22\n# caf\xe9\n")

    report = hardener.run()

    assert report.fatal is not None
    assert "not valid UTF-8" in report.fatal.detail
    assert not test_config.ssh.authorized_keys.exists()


def test_ban_service_failure_is_reported(hardener, host_executor):
    """Test that a rejected jail is recoverable but loudly reported."""
    host_executor.respond("fail2ban-client -t", success=False, stderr="ERROR in jail.local")

    report = hardener.run()

    assert report.fatal is None
    assert not report.complete
    assert [o.name for o in report.result.recoverable_failures] == ["ban-service"]
    assert report.services[ServiceKey.BAN_SERVICE] == ServiceState.NOT_INSTALLED
    assert "Brute-force banning is NOT active" in report.render()


def test_verification_mismatch_is_reported(hardener, host_executor):
    """Test that sshd still on port 22 is reported, not rolled back."""
    host_executor.respond("ss -H -tln", stdout="LISTEN 0 128 0.0.0.0:22 0.0.0.0:*\n")

    report = hardener.run()

    assert report.fatal is None
    assert report.result.status_of("verification") == StageStatus.FAILED_RECOVERABLE
    assert any(not check.passed for check in report.checks)


def test_reputation_can_be_disabled(test_config, public_key, host_executor, system):
    """Test that a disabled stage is skipped and its services stay uninstalled."""
    test_config.reputation.enabled = False
    report = HostHardener(test_config, public_key, port=2218, executor=host_executor, system=system).run()

    assert report.result.status_of("reputation-bouncer") == StageStatus.SKIPPED
    assert report.services[ServiceKey.REPUTATION] == ServiceState.NOT_INSTALLED
    assert not host_executor.ran("bash -c")


def test_dry_run_changes_nothing(test_config, public_key, host_executor, system):
    """Test that a dry run leaves files alone and skips verification."""
    host_executor.dry_run = True
    report = HostHardener(
        test_config, public_key, port=2218, dry_run=True, executor=host_executor, system=system
    ).run()

    assert report.fatal is None
    assert report.dry_run
    assert test_config.ssh.config_path.read_text() == UBUNTU_SSHD_CONFIG
    assert not test_config.ssh.authorized_keys.exists()
    assert not test_config.backup.directory.exists()
    assert report.result.status_of("verification") == StageStatus.SKIPPED


def test_dry_run_report_lists_no_backup_files(test_config, public_key, host_executor, system):
    """Test that a dry run does not point at backup copies it never made."""
    host_executor.dry_run = True
    report = HostHardener(
        test_config, public_key, port=2218, dry_run=True, executor=host_executor, system=system
    ).run()
    text = report.render()

    assert "Would back up:" in text
    assert f"  {test_config.ssh.config_path}\n" in text
    assert "💾 Backups:" not in text
    assert " -> " not in text


def test_report_render(hardener):
    """Test that the report states the policy and the manual checklist."""
    text = hardener.run().render()

    assert "SSH port: 2218" in text
    assert "Root login: prohibit-password" in text
    assert "ssh -p 2218 root@<server_ip>" in text
    assert "fail2ban-client status sshd" in text
    assert "nft list ruleset" in text
