"""OCSP responder service.

Answers single-certificate status queries from an authority's
issuance ledger and signs the response, either with the authority key
or with a delegated responder certificate issued under ``ocsp_ext``.

A serial the ledger has never recorded is answered ``unknown``, never
``good``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.x509 import ocsp

from pkiforge.ca.cert_utils import hash_algorithm
from pkiforge.ca.crl import reason_flag
from pkiforge.core.errors import SigningError
from pkiforge.core.serials import format_serial
from pkiforge.core.types import CertStatus
from pkiforge.logging import audit
from pkiforge.logging.context import operation_context
from pkiforge.models.revocation import OCSPStatus

if TYPE_CHECKING:
    from pkiforge.ca.authority import CertificateAuthority
    from pkiforge.config.settings import OcspSettings
    from pkiforge.models.key_pair import KeyPair

log = logging.getLogger(__name__)

_CERT_STATUS = {
    CertStatus.GOOD: ocsp.OCSPCertStatus.GOOD,
    CertStatus.REVOKED: ocsp.OCSPCertStatus.REVOKED,
    CertStatus.UNKNOWN: ocsp.OCSPCertStatus.UNKNOWN,
}


class OCSPResponder:
    """Build signed OCSP responses for an authority's certificates.

    Parameters
    ----------
    settings:
        The ``ocsp`` configuration section.
    responder:
        Optional delegated responder certificate and key.  When absent
        the authority signs its own responses.

    """

    def __init__(
        self,
        settings: OcspSettings,
        responder: tuple[x509.Certificate, KeyPair] | None = None,
    ) -> None:
        self._settings = settings
        self._responder = responder
        self._hash_alg = hash_algorithm(settings.hash_algorithm)

    @property
    def delegated(self) -> bool:
        return self._responder is not None

    def respond(
        self,
        authority: CertificateAuthority,
        serial: int,
        *,
        algorithm: hashes.HashAlgorithm | None = None,
    ) -> OCSPStatus:
        """Return the signed status of *serial* under *authority*.

        Raises
        ------
        SigningError
            If the response cannot be signed.

        """
        algorithm = algorithm or hashes.SHA1()  # noqa: S303
        issuer = authority.certificate
        return self._respond(
            authority,
            serial,
            algorithm,
            issuer_name_hash(issuer, algorithm),
            issuer_key_hash(issuer, algorithm),
        )

    def handle_request(self, authority: CertificateAuthority, ocsp_request_der: bytes) -> bytes:
        """Process a DER OCSP request and return a DER OCSP response.

        Malformed requests get ``MALFORMED_REQUEST``; requests naming
        another issuer get ``UNAUTHORIZED``.
        """
        try:
            ocsp_req = ocsp.load_der_ocsp_request(ocsp_request_der)
        except ValueError as exc:
            log.warning("Failed to parse OCSP request: %s", exc)
            return self._build_error_response(ocsp.OCSPResponseStatus.MALFORMED_REQUEST)

        algorithm = ocsp_req.hash_algorithm
        issuer = authority.certificate
        if (
            ocsp_req.issuer_name_hash != issuer_name_hash(issuer, algorithm)
            or ocsp_req.issuer_key_hash != issuer_key_hash(issuer, algorithm)
        ):
            log.warning(
                "OCSP request for serial %s names an issuer other than %s",
                format_serial(ocsp_req.serial_number),
                authority.name,
            )
            return self._build_error_response(ocsp.OCSPResponseStatus.UNAUTHORIZED)

        try:
            status = self._respond(
                authority,
                ocsp_req.serial_number,
                algorithm,
                ocsp_req.issuer_name_hash,
                ocsp_req.issuer_key_hash,
            )
        except SigningError:
            log.exception("Failed to build OCSP response")
            return self._build_error_response(ocsp.OCSPResponseStatus.INTERNAL_ERROR)
        return status.response_der

    def _respond(  # noqa: PLR0913
        self,
        authority: CertificateAuthority,
        serial: int,
        algorithm: hashes.HashAlgorithm,
        name_hash: bytes,
        key_hash: bytes,
    ) -> OCSPStatus:
        with operation_context(authority.name, "ocsp"):
            entry = authority.lookup(serial)
            now = datetime.now(UTC)
            next_update = now + timedelta(seconds=self._settings.response_validity_seconds)

            if entry is None:
                status = CertStatus.UNKNOWN
            elif entry.is_revoked:
                status = CertStatus.REVOKED
            else:
                status = CertStatus.GOOD

            revoked_at = entry.revoked_at if entry is not None else None
            reason = entry.revocation_reason if entry is not None else None

            builder = ocsp.OCSPResponseBuilder().add_response_by_hash(
                issuer_name_hash=name_hash,
                issuer_key_hash=key_hash,
                serial_number=serial,
                algorithm=algorithm,
                cert_status=_CERT_STATUS[status],
                this_update=now,
                next_update=next_update,
                revocation_time=revoked_at if status == CertStatus.REVOKED else None,
                revocation_reason=(
                    reason_flag(reason) if status == CertStatus.REVOKED and reason is not None else None
                ),
            )

            if self._responder is not None:
                signer_cert, signer_key = self._responder
                builder = builder.certificates([signer_cert])
            else:
                signer_cert, signer_key = authority.certificate, authority.key_pair
            builder = builder.responder_id(ocsp.OCSPResponderEncoding.HASH, signer_cert)

            try:
                response = builder.sign(signer_key.private_key, self._hash_alg)  # type: ignore[arg-type]
            except Exception as exc:  # noqa: BLE001
                msg = f"Failed to sign OCSP response: {exc}"
                raise SigningError(
                    msg,
                    operation="ocsp",
                    authority=authority.name,
                    field=format_serial(serial),
                ) from exc

            audit.ocsp_responded(authority.name, format_serial(serial), status)

        return OCSPStatus(
            serial_number=serial,
            status=status,
            produced_at=response.produced_at_utc,
            this_update=now,
            next_update=next_update,
            response_der=response.public_bytes(serialization.Encoding.DER),
            revoked_at=revoked_at if status == CertStatus.REVOKED else None,
            revocation_reason=reason if status == CertStatus.REVOKED else None,
        )

    @staticmethod
    def _build_error_response(status: ocsp.OCSPResponseStatus) -> bytes:
        """Build an error OCSP response."""
        response = ocsp.OCSPResponseBuilder.build_unsuccessful(status)
        return response.public_bytes(serialization.Encoding.DER)


# ---------------------------------------------------------------------------
# CertID hashes (RFC 6960 section 4.1.1)
# ---------------------------------------------------------------------------


def _digest(data: bytes, algorithm: hashes.HashAlgorithm) -> bytes:
    h = hashes.Hash(algorithm)
    h.update(data)
    return h.finalize()


def issuer_name_hash(issuer: x509.Certificate, algorithm: hashes.HashAlgorithm) -> bytes:
    return _digest(issuer.subject.public_bytes(), algorithm)


def issuer_key_hash(issuer: x509.Certificate, algorithm: hashes.HashAlgorithm) -> bytes:
    """Hash of the issuer's subjectPublicKey BIT STRING contents."""
    public_key = issuer.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        key_bytes = public_key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.PKCS1,
        )
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        key_bytes = public_key.public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )
    elif isinstance(public_key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
        key_bytes = public_key.public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        )
    else:
        msg = f"Unsupported issuer key type {type(public_key).__name__}"
        raise TypeError(msg)
    return _digest(key_bytes, algorithm)
