"""Front-end commands and their dispatcher.

Each command is a small frozen dataclass; :func:`dispatch` matches on
the variant and calls the corresponding :class:`PKIEnvironment`
operation, returning the lines to print.  The engine itself never sees
a command string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pkiforge.core.serials import format_serial

if TYPE_CHECKING:
    import argparse

    from pkiforge.core.types import RevocationReason
    from pkiforge.services.hierarchy import IssuanceResult, PKIEnvironment


@dataclass(frozen=True)
class Init:
    pass


@dataclass(frozen=True)
class CreateRoot:
    pass


@dataclass(frozen=True)
class CreateSub:
    pass


@dataclass(frozen=True)
class GenCrl:
    authority: str = "root"


@dataclass(frozen=True)
class CreateFinal:
    name: str


@dataclass(frozen=True)
class SetupOcsp:
    pass


@dataclass(frozen=True)
class CheckOcsp:
    cert: str


@dataclass(frozen=True)
class CreateSmime:
    email: str | None
    password: str | None = None


@dataclass(frozen=True)
class CrossSign:
    pass


@dataclass(frozen=True)
class Revoke:
    serial: int
    reason: RevocationReason | None = None
    authority: str = "sub"


@dataclass(frozen=True)
class Status:
    authority: str = "sub"


Command = (
    Init
    | CreateRoot
    | CreateSub
    | GenCrl
    | CreateFinal
    | SetupOcsp
    | CheckOcsp
    | CreateSmime
    | CrossSign
    | Revoke
    | Status
)


def command_from_args(args: argparse.Namespace) -> Command:
    """Translate parsed arguments into a command variant."""
    match args.command:
        case "init":
            return Init()
        case "create-root":
            return CreateRoot()
        case "create-sub":
            return CreateSub()
        case "gen-crl":
            return GenCrl(authority=args.authority)
        case "create-final":
            return CreateFinal(name=args.name)
        case "setup-ocsp":
            return SetupOcsp()
        case "check-ocsp":
            return CheckOcsp(cert=args.cert)
        case "create-smime":
            return CreateSmime(email=args.email, password=args.password)
        case "cross-sign":
            return CrossSign()
        case "revoke":
            return Revoke(
                serial=args.serial,
                reason=args.reason,
                authority=args.authority,
            )
        case "status":
            return Status(authority=args.authority)
    msg = f"Unknown command '{args.command}'"
    raise ValueError(msg)


def _describe(result: IssuanceResult) -> list[str]:
    issued = result.issued
    lines = [
        f"serial:    {issued.serial_hex}",
        f"subject:   {issued.subject}",
        f"profile:   {issued.profile}",
        f"not after: {issued.not_after.isoformat()}",
    ]
    lines.extend(f"{label}: {path}" for label, path in result.files.items())
    return lines


def dispatch(env: PKIEnvironment, command: Command) -> list[str]:  # noqa: C901, PLR0911
    """Run *command* against *env* and return output lines."""
    match command:
        case Init():
            return [f"initialized {path}" for path in env.init()]
        case CreateRoot():
            return ["root certificate created", *_describe(env.create_root())]
        case CreateSub():
            return ["subordinate certificate created", *_describe(env.create_sub())]
        case GenCrl(authority=authority):
            revocation_list, path = env.gen_crl(authority)
            return [
                f"CRL #{revocation_list.crl_number} written to {path}",
                f"revoked entries: {len(revocation_list.entries)}",
                f"next update: {revocation_list.next_update.isoformat()}",
            ]
        case CreateFinal(name=name):
            return [f"certificate created for {name}", *_describe(env.create_final(name))]
        case SetupOcsp():
            return [
                "OCSP responder certificate created",
                *_describe(env.setup_ocsp()),
                "usr_cert now carries authorityInfoAccess and crlDistributionPoints",
            ]
        case CheckOcsp(cert=cert):
            check = env.check_ocsp(cert)
            lines = [
                f"authority: {check.authority}",
                f"serial:    {check.serial_hex}",
                f"response:  {check.response_status.name}",
            ]
            if check.status is not None:
                lines.append(f"status:    {check.status}")
                lines.append(f"signature: {'valid' if check.signature_valid else 'INVALID'}")
                if check.this_update is not None:
                    lines.append(f"this update: {check.this_update.isoformat()}")
                if check.next_update is not None:
                    lines.append(f"next update: {check.next_update.isoformat()}")
                if check.revocation_time is not None:
                    lines.append(f"revoked at: {check.revocation_time.isoformat()}")
                if check.revocation_reason is not None:
                    lines.append(f"reason:    {check.revocation_reason.value}")
            return lines
        case CreateSmime(email=email, password=password):
            result = env.create_smime(email, password.encode("utf-8") if password else None)
            return [f"S/MIME certificate created for {email}", *_describe(result)]
        case CrossSign():
            return ["cross certificate created", *_describe(env.cross_sign())]
        case Revoke(serial=serial, reason=reason, authority=authority):
            entry = env.revoke(serial, reason, authority)
            reason_name = entry.revocation_reason.name if entry.revocation_reason is not None else "-"
            return [
                f"revoked {format_serial(serial)} on {authority}",
                f"reason:     {reason_name}",
                f"revoked at: {entry.revoked_at.isoformat() if entry.revoked_at else '-'}",
            ]
        case Status(authority=authority):
            entries = env.status(authority)
            if not entries:
                return [f"{authority}: no certificates issued"]
            return [
                f"{e.serial_hex}\t{e.status}\t{e.expires_at.date().isoformat()}\t{e.profile}\t{e.subject}"
                for e in entries
            ]
    msg = f"Unhandled command {command!r}"
    raise TypeError(msg)
