"""Revocation artifacts: CRL snapshots and OCSP assertions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization

from pkiforge.core.serials import format_serial

if TYPE_CHECKING:
    from datetime import datetime

    from cryptography import x509

    from pkiforge.core.types import CertStatus, RevocationReason


@dataclass(frozen=True)
class RevokedEntry:
    serial_number: int
    revoked_at: datetime
    reason: RevocationReason

    @property
    def serial_hex(self) -> str:
        return format_serial(self.serial_number)


@dataclass(frozen=True)
class RevocationList:
    """A signed CRL together with the entries it was built from."""

    crl: x509.CertificateRevocationList
    crl_number: int
    this_update: datetime
    next_update: datetime
    entries: tuple[RevokedEntry, ...]

    @property
    def revoked_serials(self) -> frozenset[int]:
        return frozenset(e.serial_number for e in self.entries)

    @property
    def pem(self) -> bytes:
        return self.crl.public_bytes(serialization.Encoding.PEM)

    @property
    def der(self) -> bytes:
        return self.crl.public_bytes(serialization.Encoding.DER)


@dataclass(frozen=True)
class OCSPStatus:
    """Signed single-certificate status assertion.

    ``response_der`` is the complete DER-encoded OCSP response.
    """

    serial_number: int
    status: CertStatus
    produced_at: datetime
    this_update: datetime
    next_update: datetime
    response_der: bytes
    revoked_at: datetime | None = None
    revocation_reason: RevocationReason | None = None

    @property
    def serial_hex(self) -> str:
        return format_serial(self.serial_number)
