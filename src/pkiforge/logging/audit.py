"""Structured audit event logger.

Emits standardized events for every state change of an authority.
All events are logged to the ``pkiforge.audit`` logger with a
consistent ``event_id`` field for filtering and alerting.

Sensitive material (PEM bodies, passwords) is automatically redacted
via :func:`~pkiforge.logging.sanitize.sanitize_for_logs` before
emission.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pkiforge.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from datetime import datetime

audit_log = logging.getLogger("pkiforge.audit")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    """Emit a structured audit event.

    All *extra* keyword arguments are sanitized to redact
    cryptographic material before logging.
    """
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    data.update(sanitize_for_logs(extra))
    level = getattr(logging, severity.upper(), logging.INFO)
    audit_log.log(level, message, *args, extra=data)


def authority_initialized(authority: str, subject: str, serial: str, path_length: int | None) -> None:
    """Log an authority receiving its own certificate."""
    _emit(
        "pkiforge.audit.authority_initialized",
        "Authority %s initialized: %s",
        authority,
        subject,
        serial_number=serial,
        path_length=path_length,
    )


def certificate_issued(
    authority: str,
    serial: str,
    subject: str,
    profile: str,
    not_after: datetime,
) -> None:
    """Log issuance of a certificate."""
    _emit(
        "pkiforge.audit.certificate_issued",
        "Certificate issued by %s: serial=%s subject=%s",
        authority,
        serial,
        subject,
        profile=profile,
        not_after=not_after.isoformat(),
    )


def certificate_revoked(authority: str, serial: str, reason: str) -> None:
    """Log revocation of a certificate."""
    _emit(
        "pkiforge.audit.certificate_revoked",
        "Certificate revoked by %s: serial=%s reason=%s",
        authority,
        serial,
        reason,
        severity="WARNING",
    )


def serial_burned(authority: str, serial: str, error: str) -> None:
    """Log a committed serial that never produced a certificate."""
    _emit(
        "pkiforge.audit.serial_burned",
        "Serial %s burned on %s: %s",
        serial,
        authority,
        error,
        severity="ERROR",
    )


def ledger_desync(authority: str, serial: str) -> None:
    """Log an allocator/ledger desynchronization."""
    _emit(
        "pkiforge.audit.ledger_desync",
        "Ledger already holds serial %s on %s; authority halted",
        serial,
        authority,
        severity="CRITICAL",
    )


def crl_generated(authority: str, crl_number: int, revoked_count: int) -> None:
    """Log generation of a CRL."""
    _emit(
        "pkiforge.audit.crl_generated",
        "CRL #%d generated by %s with %d revoked entries",
        crl_number,
        authority,
        revoked_count,
    )


def ocsp_responded(authority: str, serial: str, status: str) -> None:
    """Log an OCSP status assertion."""
    _emit(
        "pkiforge.audit.ocsp_responded",
        "OCSP response from %s: serial=%s status=%s",
        authority,
        serial,
        status,
        severity="DEBUG",
    )
