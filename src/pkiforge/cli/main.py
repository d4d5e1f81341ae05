"""pkiforge command-line entry point.

Usage::

    pkiforge init
    pkiforge create-root
    pkiforge create-sub
    pkiforge gen-crl
    pkiforge create-final www.example.local
    pkiforge setup-ocsp
    pkiforge check-ocsp pki_env/subCA/final-certs/www.example.local.cert.pem
    pkiforge create-smime user@example.local
    pkiforge cross-sign
    pkiforge revoke 1F --reason keyCompromise
    pkiforge -c config.yaml --validate-only
    python -m pkiforge status
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pkiforge.config import PkiConfig
    from pkiforge.core.errors import EngineError
    from pkiforge.core.types import RevocationReason

log = logging.getLogger(__name__)

# Exit status per error kind.  Anything not listed exits with 1.
EXIT_CODES: dict[str, int] = {
    "ConfigValidationError": 3,
    "KeyGenerationError": 10,
    "PolicyViolation": 11,
    "PathLengthExceededError": 12,
    "ValidityWindowError": 13,
    "DuplicateSerialError": 14,
    "NotFoundError": 15,
    "AlreadyRevokedError": 16,
    "AlreadySignedError": 17,
    "AuthorityStateError": 18,
    "IssuanceCancelledError": 19,
    "SigningError": 20,
}


def exit_code_for(exc: EngineError) -> int:
    return EXIT_CODES.get(exc.kind, 1)


def _get_version() -> str:
    from pkiforge import __version__

    return __version__


def _serial(value: str) -> int:
    from pkiforge.core.serials import parse_serial

    try:
        return parse_serial(value)
    except ValueError as exc:
        msg = f"invalid serial number '{value}'"
        raise argparse.ArgumentTypeError(msg) from exc


def _reason(value: str) -> RevocationReason:
    from pkiforge.core.types import RevocationReason

    try:
        return RevocationReason.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pkiforge",
        description="pkiforge - two-tier certificate authority toolkit",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        default=None,
        help="Path to the configuration file (YAML or JSON). Built-in defaults when omitted.",
    )
    parser.add_argument(
        "--workdir",
        metavar="DIR",
        default=None,
        help="Override pki.workdir from the configuration.",
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

    subparsers.add_parser("init", help="Create the working tree and serial counters")
    subparsers.add_parser("create-root", help="Generate the root key and self-signed certificate")
    subparsers.add_parser("create-sub", help="Generate the subordinate key and sign it with the root")

    gen_crl = subparsers.add_parser("gen-crl", help="Generate a CRL")
    gen_crl.add_argument("--authority", choices=("root", "sub"), default="root")

    create_final = subparsers.add_parser("create-final", help="Issue an end-entity certificate")
    create_final.add_argument("name", help="Common name (DNS names also become a SAN)")

    subparsers.add_parser("setup-ocsp", help="Issue the OCSP responder certificate")

    check_ocsp = subparsers.add_parser("check-ocsp", help="Query OCSP status of a certificate file")
    check_ocsp.add_argument("cert", help="PEM certificate to check")

    create_smime = subparsers.add_parser("create-smime", help="Issue an S/MIME certificate and PKCS#12")
    create_smime.add_argument("email", nargs="?", default=None, help="Mailbox (defaults to pki.smime_email)")
    create_smime.add_argument("--password", default=None, help="PKCS#12 export password")

    subparsers.add_parser("cross-sign", help="Cross-certify the subordinate key under the root")

    revoke = subparsers.add_parser("revoke", help="Revoke an issued certificate")
    revoke.add_argument("serial", type=_serial, help="Serial number in hex")
    revoke.add_argument("--reason", type=_reason, default=None, help="Reason name or code")
    revoke.add_argument("--authority", choices=("root", "sub"), default="sub")

    status = subparsers.add_parser("status", help="List the issuance ledger")
    status.add_argument("--authority", choices=("root", "sub"), default="sub")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"error: {message}", file=sys.stderr)  # noqa: T201


def _print_lines(lines: list[str]) -> None:
    for line in lines:
        print(line)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, runs one command."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config) if args.config else None
    if config_path is not None and not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        from pkiforge.config import ConfigValidationError, PkiConfig

        config = PkiConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(exit_code_for(exc))
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from pkiforge.logging import configure_logging

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("pkiforge").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    # -- dispatch subcommand ---
    from pkiforge.cli.commands import CreateSmime, command_from_args, dispatch
    from pkiforge.core.errors import EngineError
    from pkiforge.services.hierarchy import PKIEnvironment

    command = command_from_args(args)
    if isinstance(command, CreateSmime) and command.email is None:
        command = CreateSmime(config.settings.pki.smime_email, command.password)

    env = PKIEnvironment(config.settings, workdir=args.workdir)
    try:
        lines = dispatch(env, command)
    except EngineError as exc:
        if args.debug:
            raise
        _print_error(str(exc))
        sys.exit(exit_code_for(exc))
    _print_lines(lines)


def _print_settings_summary(config: PkiConfig) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    _print_lines(
        [
            f"configuration: {config!r}",
            f"workdir:       {s.pki.workdir}",
            f"keys:          {s.keys.algorithm} (ca {s.keys.ca_key_size}, "
            f"end-entity {s.keys.end_entity_key_size})",
            f"validity:      root {s.pki.root_validity_days}d, sub {s.pki.sub_validity_days}d, "
            f"final {s.pki.final_validity_days}d",
            f"profiles:      {', '.join(sorted(s.ca.profiles))}",
            f"policies:      {', '.join(sorted(s.ca.policies))}",
            f"authorities:   {', '.join(a.name for a in s.authorities.values())}",
        ],
    )
