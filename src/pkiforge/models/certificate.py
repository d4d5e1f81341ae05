"""Issued certificate entity."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from pkiforge.core.serials import format_serial
from pkiforge.models.subject import Subject

if TYPE_CHECKING:
    from datetime import datetime

    from pkiforge.models.extensions import ApprovedExtensionSet


@dataclass(frozen=True)
class IssuedCertificate:
    """Result of a successful signing operation.

    Immutable once issued.  Revocation status is tracked by the
    issuing authority's ledger, never on the certificate itself.
    """

    certificate: x509.Certificate
    serial_number: int
    profile: str
    extensions: ApprovedExtensionSet

    @property
    def serial_hex(self) -> str:
        return format_serial(self.serial_number)

    @property
    def pem(self) -> str:
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def fingerprint(self) -> str:
        """SHA-256 hex digest of the DER encoding."""
        return hashlib.sha256(self.der).hexdigest()

    @property
    def subject(self) -> Subject:
        return Subject.from_x509_name(self.certificate.subject)

    @property
    def issuer(self) -> Subject:
        return Subject.from_x509_name(self.certificate.issuer)

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    @property
    def is_ca(self) -> bool:
        return certificate_is_ca(self.certificate)

    @property
    def path_length(self) -> int | None:
        return certificate_path_length(self.certificate)


def certificate_is_ca(cert: x509.Certificate) -> bool:
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return False
    return bc.ca


def certificate_path_length(cert: x509.Certificate) -> int | None:
    """Return the basicConstraints path length, or None when unconstrained."""
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return None
    return bc.path_length
