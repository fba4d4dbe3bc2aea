"""acmeflow command-line entry point.

Usage::

    acmeflow -c /etc/acmeflow/config.yaml
    acmeflow -c config.yaml --validate-only
    acmeflow -c config.yaml issue --certificate www --certificate mail
    python -m acmeflow -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def _get_version() -> str:
    from acmeflow import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acmeflow",
        description="acmeflow: ACME (RFC 8555) certificate issuance client",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    issue_parser = subparsers.add_parser("issue", help="Issue configured certificates")
    issue_parser.add_argument(
        "--certificate",
        action="append",
        default=[],
        metavar="NAME",
        dest="certificates",
        help="Issue only this certificate (repeatable; default: all).",
    )

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"acmeflow: error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, issues certificates."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from acmeflow.config import AcmeflowConfig, ConfigValidationError  # noqa: PLC0415
    from acmeflow.core.errors import ConfigurationError  # noqa: PLC0415

    try:
        config = AcmeflowConfig(config_file=str(config_path))
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except (ConfigurationError, ValueError, KeyError) as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from acmeflow.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("acmeflow").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    # -- dispatch subcommand (default: issue everything) ---
    from acmeflow.cli.commands.issue import run_issue  # noqa: PLC0415

    names = getattr(args, "certificates", None) or []
    sys.exit(run_issue(config, names, debug=args.debug))


def _print_settings_summary(config) -> None:  # noqa: ANN001
    """Print a short summary of the loaded configuration."""
    s = config.settings
    lines = [
        f"Configuration OK: {config.data.get('_source')}",
        f"  server:       {s.server.directory_url}",
        f"  account key:  {s.account.key_path} ({s.account.key_type})",
        f"  polling:      every {s.polling.interval_seconds:g}s, "
        f"max {s.polling.max_attempts} attempts / {s.polling.timeout_seconds:g}s",
        f"  hooks:        {len(s.hooks.registered)} registered",
        "  certificates:",
    ]
    lines.extend(
        f"    - {c.name}: {', '.join(c.domains)} [{c.challenge}] -> {c.output_path}"
        for c in s.certificates
    )
    print("\n".join(lines))  # noqa: T201
