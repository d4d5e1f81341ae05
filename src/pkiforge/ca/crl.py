"""CRL generation.

Builds X.509 Certificate Revocation Lists from an authority's issuance
ledger, signed with the authority key.  The manager only reads the
ledger; the CRL number is the one piece of state it advances.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.x509 import (
    CertificateRevocationListBuilder,
    RevokedCertificateBuilder,
)

from pkiforge.ca.cert_utils import hash_algorithm
from pkiforge.core.errors import SigningError, ValidityWindowError
from pkiforge.core.types import RevocationReason
from pkiforge.logging import audit
from pkiforge.logging.context import operation_context
from pkiforge.models.revocation import RevocationList, RevokedEntry
from pkiforge.repositories.serial import SerialAllocator

if TYPE_CHECKING:
    from collections.abc import Mapping

    from pkiforge.ca.authority import CertificateAuthority
    from pkiforge.config.settings import CrlSettings

log = logging.getLogger(__name__)

_REASON_FLAGS: dict[RevocationReason, x509.ReasonFlags] = {
    RevocationReason.KEY_COMPROMISE: x509.ReasonFlags.key_compromise,
    RevocationReason.CA_COMPROMISE: x509.ReasonFlags.ca_compromise,
    RevocationReason.AFFILIATION_CHANGED: x509.ReasonFlags.affiliation_changed,
    RevocationReason.SUPERSEDED: x509.ReasonFlags.superseded,
    RevocationReason.CESSATION_OF_OPERATION: x509.ReasonFlags.cessation_of_operation,
    RevocationReason.CERTIFICATE_HOLD: x509.ReasonFlags.certificate_hold,
    RevocationReason.REMOVE_FROM_CRL: x509.ReasonFlags.remove_from_crl,
    RevocationReason.PRIVILEGE_WITHDRAWN: x509.ReasonFlags.privilege_withdrawn,
    RevocationReason.AA_COMPROMISE: x509.ReasonFlags.aa_compromise,
}


def reason_flag(reason: RevocationReason) -> x509.ReasonFlags | None:
    """Return the CRL reason flag, or ``None`` for *unspecified*."""
    return _REASON_FLAGS.get(reason)


class RevocationManager:
    """Derive signed CRLs from authority ledgers.

    Parameters
    ----------
    settings:
        The ``crl`` configuration section.
    crl_numbers:
        Persisted CRL number allocators keyed by authority name.  An
        authority without one gets an in-memory counter.

    """

    def __init__(
        self,
        settings: CrlSettings,
        crl_numbers: Mapping[str, SerialAllocator] | None = None,
    ) -> None:
        self._settings = settings
        self._crl_numbers: dict[str, SerialAllocator] = dict(crl_numbers or {})

    def _allocator(self, authority_name: str) -> SerialAllocator:
        allocator = self._crl_numbers.get(authority_name)
        if allocator is None:
            allocator = self._crl_numbers[authority_name] = SerialAllocator()
        return allocator

    def build_crl(
        self,
        authority: CertificateAuthority,
        this_update: datetime | None = None,
        next_update: datetime | None = None,
    ) -> RevocationList:
        """Build a CRL listing every revocation in *authority*'s ledger.

        A *next_update* in the past is accepted as given.
        """
        with operation_context(authority.name, "gen_crl"):
            this_update = this_update or datetime.now(UTC)
            if next_update is None:
                next_update = this_update + timedelta(days=self._settings.next_update_days)
            if next_update < this_update:
                msg = "CRL nextUpdate must not precede thisUpdate"
                raise ValidityWindowError(msg, operation="gen_crl", authority=authority.name)

            entries = tuple(
                RevokedEntry(
                    serial_number=entry.serial_number,
                    revoked_at=entry.revoked_at or this_update,
                    reason=entry.revocation_reason or RevocationReason.UNSPECIFIED,
                )
                for entry in authority.ledger.all_revoked()
            )

            issuer = authority.certificate
            crl_number = self._allocator(authority.name).next()
            builder = (
                CertificateRevocationListBuilder()
                .issuer_name(issuer.subject)
                .last_update(this_update)
                .next_update(next_update)
                .add_extension(x509.CRLNumber(crl_number), critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(
                        issuer.public_key(),  # type: ignore[arg-type]
                    ),
                    critical=False,
                )
            )

            for revoked in entries:
                rev_builder = (
                    RevokedCertificateBuilder()
                    .serial_number(revoked.serial_number)
                    .revocation_date(revoked.revoked_at)
                )
                flag = reason_flag(revoked.reason)
                if flag is not None:
                    rev_builder = rev_builder.add_extension(x509.CRLReason(flag), critical=False)
                builder = builder.add_revoked_certificate(rev_builder.build())

            try:
                crl = builder.sign(
                    authority.key_pair.private_key,  # type: ignore[arg-type]
                    hash_algorithm(self._settings.hash_algorithm),  # type: ignore[arg-type]
                )
            except Exception as exc:  # noqa: BLE001
                msg = f"Failed to sign CRL: {exc}"
                raise SigningError(msg, operation="gen_crl", authority=authority.name) from exc

            log.info(
                "CRL #%d built: %d revoked certificates, next update %s",
                crl_number,
                len(entries),
                next_update.isoformat(),
            )
            audit.crl_generated(authority.name, crl_number, len(entries))

        return RevocationList(
            crl=crl,
            crl_number=crl_number,
            this_update=this_update,
            next_update=next_update,
            entries=entries,
        )
