"""Ledger entry entity."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from pkiforge.core.serials import format_serial
from pkiforge.core.types import LedgerStatus, RevocationReason


@dataclass(frozen=True)
class LedgerEntry:
    """One issued certificate as recorded by its authority.

    Created at issuance and only ever changed by revocation
    (``valid`` to ``revoked``, one way).  The entry also keeps the
    certificate PEM so the certificate and its record are persisted
    in a single append.
    """

    serial_number: int
    subject: str
    status: LedgerStatus
    issued_at: datetime
    expires_at: datetime
    profile: str = ""
    fingerprint: str = ""
    certificate_pem: str = ""
    request_id: str = ""
    revoked_at: datetime | None = None
    revocation_reason: RevocationReason | None = None

    @property
    def serial_hex(self) -> str:
        return format_serial(self.serial_number)

    @property
    def is_revoked(self) -> bool:
        return self.status == LedgerStatus.REVOKED

    def revoked(self, reason: RevocationReason, at: datetime) -> LedgerEntry:
        """Return a copy of this entry transitioned to ``revoked``."""
        return replace(
            self,
            status=LedgerStatus.REVOKED,
            revoked_at=at,
            revocation_reason=reason,
        )
