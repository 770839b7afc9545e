"""CLI entrypoint for vault-fetchkit."""
import sys
import argparse
import logging
from pathlib import Path

from .validators import validate_secret_names

VERSION = "0.1.0"


def _configure_logging(verbose: bool) -> None:
    # Logs go to stderr so stdout carries only secret values
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        stream=sys.stderr
    )


def cmd_version(args):
    """Show version information."""
    print(f"vault-fetchkit {VERSION}")


def cmd_config_set_path(args):
    """Set config file path preference."""
    from vault_fetchkit.secrets.domains.preferences import set_preference

    config_path = Path(args.path).resolve()

    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)

    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)

    set_preference("config_path", str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show current config file path."""
    from vault_fetchkit.secrets.domains.config_loader import default_config_path
    from vault_fetchkit.secrets.domains.preferences import get_preference

    config_path_pref = get_preference("config_path")

    if config_path_pref:
        config_path = Path(config_path_pref)
        suffix = "" if config_path.exists() else " (file not found)"
        print(f"Config path: {config_path}{suffix}")
        print("Source: preference")
    else:
        default_config = default_config_path()
        suffix = "" if default_config.exists() else " (file not found)"
        print(f"Config path: {default_config}")
        print(f"Source: default{suffix}")


def cmd_config_clear(args):
    """Clear config path preference."""
    from vault_fetchkit.secrets.domains.config_loader import default_config_path
    from vault_fetchkit.secrets.domains.preferences import clear_preference

    clear_preference("config_path")
    print(f"Config path preference cleared. Will use default: {default_config_path()}")


def cmd_secrets_get(args):
    """Get one or more secrets, fetched in a single deduplicated batch."""
    from vault_fetchkit.secrets.workflows.secret_operations import get_secrets

    validate_secret_names(args.secret_names)
    values = get_secrets(args.secret_names, args.project_id, quiet=args.quiet)

    missing = [name for name, value in values.items() if value is None]
    for name, value in values.items():
        if value is None:
            continue
        if args.quiet:
            print(value)
        else:
            print(f"Secret '{name}': {value}")

    if missing:
        for name in missing:
            print(f"Error: Secret '{name}' not found in GCP or env", file=sys.stderr)
        sys.exit(1)
    sys.exit(0)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="fetchkit",
        description="vault-fetchkit CLI - batched, deduplicated GCP Secret Manager access",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (authentication, network, secret not found, etc.)
  2 - Usage error (invalid arguments, invalid secret name format, etc.)

Environment variables:
  GCP_PROJECT - GCP project ID (overrides config file)

Configuration:
  Default location: ~/.config/vault-fetchkit/config.yml
  Custom path: Set with 'fetchkit config set-path <path>'
  View current: Run 'fetchkit config show'
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging on stderr"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("version", help="Show version information")

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Manage vault-fetchkit configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="Store the absolute config file path in ~/.config/vault-fetchkit/preferences.json"
    )
    config_set_path_parser.add_argument("path", help="Path to config file")
    config_subparsers.add_parser("show", help="Show current config path")
    config_subparsers.add_parser("clear", help="Clear config path preference")

    secrets_parser = subparsers.add_parser(
        "secrets",
        help="Secret operations",
        description="Fetch secrets from GCP Secret Manager"
    )
    secrets_subparsers = secrets_parser.add_subparsers(dest="secrets_command")

    get_parser = secrets_subparsers.add_parser(
        "get",
        help="Get one or more secret values",
        description="""
Fetch secrets with environment variables taking precedence over GCP.

All names are resolved in one batch: GCP is contacted once per project and
credential, and values are cached in memory for the configured TTL.

Exit codes:
  0 - All secrets found and printed
  1 - At least one secret not found (not in GCP or environment)
  2 - Invalid secret name format
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    get_parser.add_argument(
        "secret_names",
        nargs="+",
        metavar="secret_name",
        help="Name of a secret (format: [a-zA-Z0-9_-]+)"
    )
    get_parser.add_argument(
        "--project-id",
        help="GCP project ID (auto-detected from GCP_PROJECT env var or config file if not provided)"
    )
    get_parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Output only the secret values, one per line"
    )

    return parser, config_parser, secrets_parser


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (authentication, network, secret not found, etc.)
        2 - Usage errors (invalid arguments, invalid secret name format, etc.)
    """
    parser, config_parser, secrets_parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    handlers = {
        ("version", None): cmd_version,
        ("config", "set-path"): cmd_config_set_path,
        ("config", "show"): cmd_config_show,
        ("config", "clear"): cmd_config_clear,
        ("secrets", "get"): cmd_secrets_get,
    }
    subcommand = getattr(args, f"{args.command}_command", None)
    handler = handlers.get((args.command, subcommand))

    if handler is None:
        {"config": config_parser, "secrets": secrets_parser}.get(args.command, parser).print_help()
        sys.exit(2)

    try:
        handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
