"""CLI entry point for Host Hardener."""

import argparse
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

from host_hardener import __version__
from host_hardener.config import HardenerConfig
from host_hardener.exceptions import HardenerError
from host_hardener.hardener import HostHardener
from host_hardener.logs import configure_logging
from host_hardener.types import RootLoginPolicy


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="host-hardener",
        description="Host Hardener - SSH, firewall and intrusion prevention for Linux servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Install a key and move SSH to port 2218
  sudo host-hardener "ssh-ed25519 AAAA... admin@laptop" 2218

  # Take the port and everything else from a config file
  sudo host-hardener --config hardener.yaml "ssh-ed25519 AAAA..."

  # Dry run
  sudo host-hardener --dry-run "ssh-ed25519 AAAA..." 2218

Environment variables:
  HARDENER_SSH_PORT             - Administrative SSH port
  HARDENER_SSH_ROOT_LOGIN       - key-only, disabled or allowed
  HARDENER_FIREWALL_SERVICE_PORTS - Comma-separated PORT/PROTO list
  HARDENER_REPUTATION_ENABLED   - Install CrowdSec (true/false)
  HARDENER_LOG_LEVEL            - Log level

See README.md for full documentation.
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument(
        "credential",
        nargs="?",
        help="Public key to install, quoted (e.g. \"ssh-ed25519 AAAA... user@host\")",
    )

    parser.add_argument(
        "port",
        nargs="?",
        type=int,
        help="Administrative SSH port (overrides config/env)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration file (YAML)",
    )

    parser.add_argument(
        "--root-login",
        choices=[policy.value for policy in RootLoginPolicy],
        help="Root login policy (default: key-only)",
    )

    parser.add_argument(
        "--no-http",
        action="store_true",
        help="Do not open 80/tcp",
    )

    parser.add_argument(
        "--no-https",
        action="store_true",
        help="Do not open 443/tcp",
    )

    parser.add_argument(
        "--allow-port",
        action="append",
        default=[],
        metavar="PORT/PROTO",
        help="Additional service port to open (repeatable)",
    )

    parser.add_argument(
        "--trusted-source",
        action="append",
        default=[],
        metavar="ADDR",
        help="Address or network allowed on every port (repeatable)",
    )

    parser.add_argument(
        "--skip-reputation",
        action="store_true",
        help="Skip CrowdSec installation",
    )

    parser.add_argument(
        "--backup-dir",
        type=Path,
        help="Custom backup directory",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate changes without applying them",
    )

    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Do not ask for confirmation",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-error output",
    )

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> HardenerConfig:
    """Load configuration from various sources.

    Args:
        args: Parsed command-line arguments

    Returns:
        Configuration object
    """
    if args.config:
        config = HardenerConfig.from_yaml(args.config)
    else:
        config = HardenerConfig.from_env()

    # Apply CLI overrides
    if args.root_login:
        config.ssh.root_login = RootLoginPolicy(args.root_login)

    if args.no_http:
        config.firewall.allow_http = False

    if args.no_https:
        config.firewall.allow_https = False

    if args.allow_port:
        config.firewall.service_ports = config.firewall.service_ports + list(args.allow_port)

    if args.trusted_source:
        config.firewall.trusted_sources = config.firewall.trusted_sources + list(args.trusted_source)

    if args.skip_reputation:
        config.reputation.enabled = False

    if args.backup_dir:
        config.backup.directory = args.backup_dir

    return config


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """Main entry point for CLI.

    Raises:
        SystemExit: Always exits with appropriate code
    """
    args = parse_args(argv)

    # Basic sanity checks
    if not sys.platform.startswith("linux"):
        print("Error: This tool only supports Linux systems", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(args)
        configure_logging(config.logging.level, config.logging.file, verbose=args.verbose, quiet=args.quiet)

        if not args.quiet:
            print("╔══════════════════════════════════════╗")
            print("║  HOST HARDENER                       ║")
            print(f"║  Version {__version__:<28}║")
            print("╚══════════════════════════════════════╝\n")

            if args.dry_run:
                print("🔍 DRY RUN MODE - No changes will be applied\n")

        hardener = HostHardener(config, args.credential, port=args.port, dry_run=args.dry_run)

        # Confirm before proceeding
        if not (args.dry_run or args.quiet or args.yes):
            port = args.port if args.port is not None else config.ssh.port
            print("📋 Configuration Summary:")
            print(f"  SSH Port: {port if port is not None else 'not set'}")
            print(f"  Root Login: {config.ssh.root_login.sshd_value}")
            print(f"  HTTP/HTTPS: {'open' if config.firewall.allow_http else 'closed'}"
                  f"/{'open' if config.firewall.allow_https else 'closed'}")
            print(f"  Extra Ports: {', '.join(config.firewall.service_ports) or 'none'}")
            print(f"  CrowdSec: {'Enabled' if config.reputation.enabled else 'Disabled'}")
            print(f"  Backup Directory: {config.backup.directory}\n")
            print("⚠️  Keep this session open until a new login on the new port works.\n")

            response = input("Proceed with hardening? (yes/no): ")
            if response.lower() != "yes":
                print("Aborted.")
                sys.exit(0)

        report = hardener.run()

        if report.fatal is not None:
            print(report.render(), file=sys.stderr)
            print(f"❌ Error: {report.fatal.detail}", file=sys.stderr)
            sys.exit(1)

        if not args.quiet:
            print()
            if report.complete:
                print("╔══════════════════════════════════════╗")
                print("║      ✅ HARDENING COMPLETE!          ║")
                print("╚══════════════════════════════════════╝\n")
            else:
                print("╔══════════════════════════════════════╗")
                print("║   ⚠️  HARDENING PARTIALLY COMPLETE   ║")
                print("╚══════════════════════════════════════╝\n")
            print(report.render())

        sys.exit(0)

    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user", file=sys.stderr)
        sys.exit(130)

    except HardenerError as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
