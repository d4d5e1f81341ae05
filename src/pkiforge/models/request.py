"""Certificate signing request."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from pkiforge.ca.cert_utils import eku_names, key_usage_names
from pkiforge.core.errors import PolicyViolation
from pkiforge.models.subject import Subject

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes

# Extensions that map onto RequestedExtensions fields
_KNOWN_EXTENSIONS = (
    x509.BasicConstraints,
    x509.KeyUsage,
    x509.ExtendedKeyUsage,
    x509.SubjectAlternativeName,
)


@dataclass(frozen=True)
class RequestedExtensions:
    """Extensions a requester asks for.

    ``None`` means "not requested"; the profile decides.  ``other_oids``
    lists any further extensions found in a CSR, by dotted OID.
    """

    ca: bool | None = None
    path_length: int | None = None
    key_usages: frozenset[str] | None = None
    extended_key_usages: frozenset[str] | None = None
    subject_alt_names: tuple[x509.GeneralName, ...] = ()
    other_oids: tuple[str, ...] = ()


@dataclass(frozen=True)
class SigningRequest:
    """Subject and public key submitted to an authority for signing.

    Produced by a requester, consumed exactly once by an authority
    (tracked by ``request_id``).  A request built from a CSR is
    identified by the SHA-256 of the CSR DER, so reloading the same CSR
    yields the same id.
    """

    subject: Subject
    public_key: CertificatePublicKeyTypes
    requested: RequestedExtensions = field(default_factory=RequestedExtensions)
    csr: x509.CertificateSigningRequest | None = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_csr(cls, csr: x509.CertificateSigningRequest) -> SigningRequest:
        """Build a request from a parsed PKCS#10 CSR.

        Raises
        ------
        PolicyViolation
            If the CSR self-signature does not verify.

        """
        if not csr.is_signature_valid:
            msg = "CSR signature is invalid"
            raise PolicyViolation(msg, field="signature")

        ca = path_length = None
        key_usages = extended_key_usages = None
        sans: tuple[x509.GeneralName, ...] = ()
        other: list[str] = []
        for ext in csr.extensions:
            value = ext.value
            if isinstance(value, x509.BasicConstraints):
                ca, path_length = value.ca, value.path_length
            elif isinstance(value, x509.KeyUsage):
                key_usages = key_usage_names(value)
            elif isinstance(value, x509.ExtendedKeyUsage):
                extended_key_usages = eku_names(value)
            elif isinstance(value, x509.SubjectAlternativeName):
                sans = tuple(value)
            else:
                other.append(ext.oid.dotted_string)

        return cls(
            subject=Subject.from_x509_name(csr.subject),
            public_key=csr.public_key(),
            requested=RequestedExtensions(
                ca=ca,
                path_length=path_length,
                key_usages=key_usages,
                extended_key_usages=extended_key_usages,
                subject_alt_names=sans,
                other_oids=tuple(other),
            ),
            csr=csr,
            request_id=hashlib.sha256(csr.public_bytes(serialization.Encoding.DER)).hexdigest(),
        )

    @classmethod
    def from_pem(cls, pem: bytes) -> SigningRequest:
        try:
            csr = x509.load_pem_x509_csr(pem)
        except ValueError as exc:
            msg = f"Cannot parse CSR: {exc}"
            raise PolicyViolation(msg, field="csr") from exc
        return cls.from_csr(csr)

    def to_pem(self) -> bytes:
        if self.csr is None:
            msg = "Signing request was not built from a CSR"
            raise ValueError(msg)
        return self.csr.public_bytes(serialization.Encoding.PEM)
