"""Certificate authority -- sign certificates with an authority's own key.

An authority owns a key pair, its own certificate, a serial allocator,
an issuance ledger and a named policy.  Its lifecycle is::

    uninitialized --issue_self_signed--> active               (root)
    uninitialized --create_signing_request--> awaiting-parent-signature
                  --install_certificate--> active             (subordinate)

Issuance runs under a per-authority lock: policy validation, validity
and path-length checks, serial allocation, signing and the ledger
record form one unit, so serials appear in the ledger in strictly
increasing order.  Once a serial is committed it is never reused; a
failure after that point burns it and is surfaced as an error.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import threading
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from pkiforge.ca.cert_utils import (
    build_authority_info_access,
    build_crl_distribution_points,
    build_eku,
    build_key_usage,
    hash_algorithm,
)
from pkiforge.core.errors import (
    AlreadySignedError,
    AuthorityStateError,
    DuplicateSerialError,
    EngineError,
    IssuanceCancelledError,
    PathLengthExceededError,
    PolicyViolation,
    SigningError,
    ValidityWindowError,
)
from pkiforge.core.serials import format_serial
from pkiforge.core.types import AuthorityKind, AuthorityState, LedgerStatus, RevocationReason
from pkiforge.logging import audit
from pkiforge.logging.context import operation_context
from pkiforge.models.certificate import IssuedCertificate, certificate_path_length
from pkiforge.models.extensions import ApprovedExtensionSet
from pkiforge.models.ledger import LedgerEntry
from pkiforge.models.request import RequestedExtensions, SigningRequest
from pkiforge.models.subject import Subject

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes

    from pkiforge.ca.policy import PolicyEngine
    from pkiforge.config.settings import CAProfileSettings, CASettings
    from pkiforge.models.key_pair import KeyPair
    from pkiforge.repositories.ledger import IssuanceLedger
    from pkiforge.repositories.serial import SerialAllocator

log = logging.getLogger(__name__)

VALIDITY_CLAMP = "clamp"


class CertificateAuthority:
    """A root or subordinate signing authority.

    Parameters
    ----------
    name:
        Authority identifier used in logs and errors.
    kind:
        ``root`` or ``subordinate``.
    policy:
        Name of the policy applied to every request this authority signs.
    profile:
        Extension profile of the authority's own certificate.
    ca_settings:
        The ``ca`` configuration section (hash, validity overflow
        handling, signing retries, profiles).
    policy_engine:
        Validates requests against ``policy``.
    serials, ledger:
        Persisted per-authority state.
    key_pair, certificate, chain:
        Loaded key material and certificates, when already provisioned.
    profile_overrides:
        Per-authority profile replacements (see
        :meth:`enable_revocation_endpoints`).
    newcerts_dir:
        Directory receiving a ``<SERIAL>.pem`` copy of every issued
        certificate.

    """

    def __init__(  # noqa: PLR0913
        self,
        name: str,
        kind: AuthorityKind | str,
        *,
        policy: str,
        profile: str,
        ca_settings: CASettings,
        policy_engine: PolicyEngine,
        serials: SerialAllocator,
        ledger: IssuanceLedger,
        key_pair: KeyPair | None = None,
        certificate: x509.Certificate | None = None,
        chain: tuple[x509.Certificate, ...] = (),
        profile_overrides: dict[str, CAProfileSettings] | None = None,
        newcerts_dir: str | Path | None = None,
    ) -> None:
        self.name = name
        self.kind = AuthorityKind(kind)
        self.policy = policy
        self.profile = profile
        self._settings = ca_settings
        self._policy_engine = policy_engine
        self._serials = serials
        self._ledger = ledger
        self._key_pair = key_pair
        self._certificate = certificate
        self._chain = chain
        self._profile_overrides = dict(profile_overrides or {})
        self._newcerts_dir = Path(newcerts_dir) if newcerts_dir is not None else None
        self._hash = hash_algorithm(ca_settings.hash_algorithm)
        self._lock = threading.Lock()
        self._consumed_requests: set[str] = set()
        self._pending_request: SigningRequest | None = None
        self._halted = False

        if certificate is not None:
            self._state = AuthorityState.ACTIVE
        else:
            self._state = AuthorityState.UNINITIALIZED

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> AuthorityState:
        return self._state

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def certificate(self) -> x509.Certificate:
        if self._certificate is None:
            msg = f"Authority is {self._state} and has no certificate"
            raise AuthorityStateError(msg, authority=self.name)
        return self._certificate

    @property
    def key_pair(self) -> KeyPair:
        if self._key_pair is None:
            msg = "Authority has no key pair"
            raise AuthorityStateError(msg, authority=self.name)
        return self._key_pair

    @property
    def chain(self) -> tuple[x509.Certificate, ...]:
        """Issuer certificates above this authority, nearest first."""
        return self._chain

    @property
    def subject(self) -> Subject:
        if self._certificate is not None:
            return Subject.from_x509_name(self._certificate.subject)
        if self._pending_request is not None:
            return self._pending_request.subject
        msg = "Authority has no subject yet"
        raise AuthorityStateError(msg, authority=self.name)

    @property
    def path_length(self) -> int | None:
        """Remaining path length from the authority's own basicConstraints."""
        return certificate_path_length(self.certificate)

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    @property
    def serials(self) -> SerialAllocator:
        return self._serials

    @property
    def ledger(self) -> IssuanceLedger:
        return self._ledger

    @property
    def pending_request(self) -> SigningRequest | None:
        return self._pending_request

    @property
    def profile_overrides(self) -> dict[str, CAProfileSettings]:
        return dict(self._profile_overrides)

    def profile_settings(self, name: str) -> CAProfileSettings:
        """Return the effective profile, including per-authority overrides."""
        override = self._profile_overrides.get(name)
        if override is not None:
            return override
        return self._policy_engine.profile(name)

    # -- error context --------------------------------------------------------

    @contextlib.contextmanager
    def _operation(self, operation: str) -> Iterator[None]:
        """Bind log context and stamp engine errors with operation/authority."""
        with operation_context(self.name, operation):
            try:
                yield
            except EngineError as exc:
                exc.operation = operation
                if exc.authority is None:
                    exc.authority = self.name
                raise

    def _require_state(self, *allowed: AuthorityState) -> None:
        if self._state not in allowed:
            msg = f"Authority is {self._state}; expected {' or '.join(allowed)}"
            raise AuthorityStateError(msg)

    # -- lifecycle ------------------------------------------------------------

    def issue_self_signed(
        self,
        subject: Subject,
        validity_days: int,
        *,
        key_pair: KeyPair | None = None,
    ) -> IssuedCertificate:
        """Sign the root's own certificate and become active.

        The extensions come from the authority's own profile; its
        ``path_length`` is the configured ceiling for the hierarchy.

        Raises
        ------
        AlreadySignedError
            If the authority already holds a certificate.

        """
        with self._operation("issue_self_signed"), self._lock:
            if self.kind != AuthorityKind.ROOT:
                msg = "Only a root authority can self-sign"
                raise AuthorityStateError(msg)
            if self._state == AuthorityState.ACTIVE:
                msg = "Root certificate has already been issued"
                raise AlreadySignedError(msg)
            if key_pair is not None:
                self._key_pair = key_pair
            if self._key_pair is None:
                msg = "A key pair is required to self-sign"
                raise AuthorityStateError(msg)
            if not subject.common_name:
                msg = "Subject common name is required"
                raise PolicyViolation(msg, field="common_name")
            if validity_days <= 0:
                msg = f"Validity must be positive (got {validity_days} days)"
                raise ValidityWindowError(msg, field="validity_days")

            profile = self.profile_settings(self.profile)
            approved = _approve_profile(self.profile, profile)
            now = datetime.now(UTC)
            name = subject.to_x509_name()
            public_key = self._key_pair.public_key
            serial = self._serials.next()
            builder = self._builder(
                name,
                public_key,
                serial,
                now,
                now + timedelta(days=validity_days),
                approved,
                issuer_name=name,
                issuer_public_key=public_key,
                issuer_certificate=None,
            )
            cert = self._sign(builder, serial)
            issued = self._commit(cert, serial, approved)
            self._certificate = cert
            self._state = AuthorityState.ACTIVE

        audit.authority_initialized(self.name, str(subject), issued.serial_hex, approved.path_length)
        log.info("Root authority %s self-signed (serial=%s)", self.name, issued.serial_hex)
        return issued

    def create_signing_request(
        self,
        subject: Subject,
        *,
        key_pair: KeyPair | None = None,
    ) -> SigningRequest:
        """Build this subordinate's CSR for submission to its parent."""
        with self._operation("create_signing_request"), self._lock:
            if self.kind != AuthorityKind.SUBORDINATE:
                msg = "Only a subordinate authority creates a signing request"
                raise AuthorityStateError(msg)
            if self._state == AuthorityState.ACTIVE:
                msg = "Subordinate certificate has already been installed"
                raise AlreadySignedError(msg)
            self._require_state(AuthorityState.UNINITIALIZED)
            if key_pair is not None:
                self._key_pair = key_pair
            if self._key_pair is None:
                msg = "A key pair is required to build a signing request"
                raise AuthorityStateError(msg)

            csr = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(subject.to_x509_name())
                .sign(self._key_pair.private_key, self._hash)  # type: ignore[arg-type]
            )
            request = SigningRequest.from_csr(csr)
            self._pending_request = request
            self._state = AuthorityState.AWAITING_PARENT_SIGNATURE

        log.info("Subordinate %s created signing request for %s", self.name, subject)
        return request

    def resume_pending(self, request: SigningRequest) -> None:
        """Restore the awaiting state from a persisted signing request."""
        self._pending_request = request
        if self._state == AuthorityState.UNINITIALIZED:
            self._state = AuthorityState.AWAITING_PARENT_SIGNATURE

    def install_certificate(
        self,
        certificate: x509.Certificate,
        chain: tuple[x509.Certificate, ...] = (),
    ) -> None:
        """Install the certificate a parent issued for this subordinate."""
        with self._operation("install_certificate"), self._lock:
            if self._state == AuthorityState.ACTIVE:
                msg = "Subordinate certificate has already been installed"
                raise AlreadySignedError(msg)
            self._require_state(AuthorityState.AWAITING_PARENT_SIGNATURE)
            own = self.key_pair.public_pem()
            installed = certificate.public_key().public_bytes(
                serialization.Encoding.PEM,
                serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            if own != installed:
                msg = "Certificate public key does not match the authority key"
                raise AuthorityStateError(msg, field="public_key")
            self._certificate = certificate
            self._chain = chain
            self._pending_request = None
            self._state = AuthorityState.ACTIVE

        subject = Subject.from_x509_name(certificate.subject)
        audit.authority_initialized(
            self.name,
            str(subject),
            format_serial(certificate.serial_number),
            certificate_path_length(certificate),
        )

    # -- issuance -------------------------------------------------------------

    def issue(
        self,
        request: SigningRequest,
        profile_name: str,
        validity_days: int,
        *,
        cancel: threading.Event | None = None,
    ) -> IssuedCertificate:
        """Validate, sign and record a certificate for *request*.

        Parameters
        ----------
        request:
            Subject, public key and requested extensions.
        profile_name:
            Extension profile selected by the caller.
        validity_days:
            Requested lifetime.
        cancel:
            Optional cancellation token, honoured until the serial is
            committed.

        Raises
        ------
        PolicyViolation, PathLengthExceededError, ValidityWindowError
            The request is rejected; nothing was committed.
        IssuanceCancelledError
            *cancel* was set before the serial was committed.
        SigningError
            Signing failed after retries; the serial is burned.
        DuplicateSerialError
            Allocator and ledger disagree; the authority is halted.

        """
        with self._operation("issue"), self._lock:
            if self._halted:
                msg = "Authority halted after a serial/ledger desynchronization; operator action required"
                raise DuplicateSerialError(msg)
            self._require_state(AuthorityState.ACTIVE)
            if request.request_id in self._consumed_requests:
                msg = f"Signing request {request.request_id} has already been consumed"
                raise PolicyViolation(msg, field="request_id")
            prior = self._ledger.find_by_request(request.request_id)
            if prior is not None:
                msg = f"Signing request {request.request_id} was already signed as serial {prior.serial_hex}"
                raise PolicyViolation(msg, field="request_id")

            approved = self._policy_engine.validate(
                self.policy,
                request,
                issuer_subject=self.subject,
                profile_name=profile_name,
                profile=self.profile_settings(profile_name),
            )
            approved = self._constrain_path_length(approved)
            now = datetime.now(UTC)
            not_after = self._validity_end(now, validity_days)

            if cancel is not None and cancel.is_set():
                msg = "Issuance cancelled before serial allocation"
                raise IssuanceCancelledError(msg)

            serial = self._serials.next()
            self._consumed_requests.add(request.request_id)
            builder = self._builder(
                request.subject.to_x509_name(),
                request.public_key,
                serial,
                now,
                not_after,
                approved,
                issuer_name=self.certificate.subject,
                issuer_public_key=self.certificate.public_key(),
                issuer_certificate=self.certificate,
            )
            cert = self._sign(builder, serial)
            issued = self._commit(cert, serial, approved, request_id=request.request_id)

        audit.certificate_issued(
            self.name,
            issued.serial_hex,
            str(request.subject),
            profile_name,
            issued.not_after,
        )
        log.info(
            "Issued certificate serial=%s subject=%s profile=%s",
            issued.serial_hex,
            request.subject,
            profile_name,
        )
        return issued

    def cross_sign(
        self,
        public_key: CertificatePublicKeyTypes,
        subject: Subject,
        validity_days: int,
        *,
        profile_name: str = "v3_cross",
        cancel: threading.Event | None = None,
    ) -> IssuedCertificate:
        """Issue a CA certificate for a key this authority did not parent.

        Same rules as :meth:`issue`, including the path-length
        decrement; only the request is built here from a bare key.
        """
        request = SigningRequest(
            subject=subject,
            public_key=public_key,
            requested=RequestedExtensions(ca=True),
        )
        return self.issue(request, profile_name, validity_days, cancel=cancel)

    def revoke(
        self,
        serial: int,
        reason: RevocationReason | str | int | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> LedgerEntry:
        """Mark *serial* revoked in the ledger; nothing is re-signed."""
        with self._operation("revoke"):
            reason = RevocationReason.parse(reason)
            entry = self._ledger.mark_revoked(serial, reason, timestamp)
        audit.certificate_revoked(self.name, entry.serial_hex, reason.name)
        return entry

    def lookup(self, serial: int) -> LedgerEntry | None:
        return self._ledger.get(serial)

    def enable_revocation_endpoints(
        self,
        ocsp_url: str | None,
        crl_url: str | None,
        *,
        profile_name: str = "usr_cert",
    ) -> CAProfileSettings:
        """Add AIA/CDP to *profile_name* for certificates issued from now on.

        Certificates already issued are not changed.
        """
        with self._operation("enable_revocation_endpoints"), self._lock:
            profile = replace(
                self.profile_settings(profile_name),
                ocsp_url=ocsp_url,
                crl_url=crl_url,
            )
            self._profile_overrides[profile_name] = profile
        log.info(
            "Profile %s now carries ocsp=%s crl=%s",
            profile_name,
            ocsp_url,
            crl_url,
        )
        return profile

    # -- internals -----------------------------------------------------------

    def _constrain_path_length(self, approved: ApprovedExtensionSet) -> ApprovedExtensionSet:
        """Apply the decrementing path-length rule to a CA issuance."""
        if not approved.is_ca:
            return approved
        remaining = self.path_length
        if remaining is None:
            return approved
        if remaining == 0:
            msg = "Issuer path length is 0; it cannot sign CA certificates"
            raise PathLengthExceededError(msg, field="path_length")
        ceiling = remaining - 1
        if approved.path_length is None:
            return replace(approved, path_length=ceiling)
        if approved.path_length > ceiling:
            msg = (
                f"Requested path length {approved.path_length} exceeds "
                f"the issuer's limit of {ceiling}"
            )
            raise PathLengthExceededError(msg, field="path_length")
        return approved

    def _validity_end(self, now: datetime, validity_days: int) -> datetime:
        if validity_days <= 0:
            msg = f"Validity must be positive (got {validity_days} days)"
            raise ValidityWindowError(msg, field="validity_days")
        issuer_end = self.not_after
        if now >= issuer_end:
            msg = f"Issuer certificate expired at {issuer_end.isoformat()}"
            raise ValidityWindowError(msg, field="validity_days")
        not_after = now + timedelta(days=validity_days)
        if not_after <= issuer_end:
            return not_after
        if self._settings.validity_overflow == VALIDITY_CLAMP:
            log.info(
                "Clamping requested validity %s to issuer notAfter %s",
                not_after.isoformat(),
                issuer_end.isoformat(),
            )
            return issuer_end
        msg = (
            f"Requested notAfter {not_after.isoformat()} exceeds issuer "
            f"notAfter {issuer_end.isoformat()}"
        )
        raise ValidityWindowError(msg, field="validity_days")

    def _builder(  # noqa: PLR0913
        self,
        subject_name: x509.Name,
        public_key: CertificatePublicKeyTypes,
        serial_number: int,
        not_before: datetime,
        not_after: datetime,
        approved: ApprovedExtensionSet,
        *,
        issuer_name: x509.Name,
        issuer_public_key: CertificatePublicKeyTypes,
        issuer_certificate: x509.Certificate | None,
    ) -> x509.CertificateBuilder:
        """Build a CertificateBuilder carrying the approved extensions."""
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject_name)
            .issuer_name(issuer_name)
            .public_key(public_key)
            .serial_number(serial_number)
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )

        if approved.ca is not None:
            builder = builder.add_extension(
                x509.BasicConstraints(
                    ca=approved.ca,
                    path_length=approved.path_length if approved.ca else None,
                ),
                critical=approved.basic_constraints_critical,
            )

        if approved.key_usages:
            builder = builder.add_extension(
                build_key_usage(approved.key_usages),
                critical=approved.key_usage_critical,
            )

        if approved.extended_key_usages:
            builder = builder.add_extension(
                build_eku(tuple(sorted(approved.extended_key_usages))),
                critical=approved.extended_key_usage_critical,
            )

        if approved.subject_alt_names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName(list(approved.subject_alt_names)),
                critical=False,
            )

        if approved.subject_key_identifier:
            builder = builder.add_extension(
                x509.SubjectKeyIdentifier.from_public_key(public_key),  # type: ignore[arg-type]
                critical=False,
            )

        if approved.authority_key_identifier:
            builder = builder.add_extension(
                _authority_key_identifier(issuer_certificate, issuer_public_key),
                critical=False,
            )

        if approved.ocsp_url:
            builder = builder.add_extension(
                build_authority_info_access(approved.ocsp_url),
                critical=False,
            )

        if approved.crl_url:
            builder = builder.add_extension(
                build_crl_distribution_points(approved.crl_url),
                critical=False,
            )

        return builder

    def _sign(self, builder: x509.CertificateBuilder, serial: int) -> x509.Certificate:
        """Sign with the authority key, retrying transient failures.

        The serial is already committed; a final failure burns it.
        """
        attempts = 1 + max(self._settings.signing_retries, 0)
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return builder.sign(
                    self.key_pair.private_key,  # type: ignore[arg-type]
                    self._hash,  # type: ignore[arg-type]
                )
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                log.warning(
                    "Signing attempt %d/%d for serial %s failed: %s",
                    attempt,
                    attempts,
                    format_serial(serial),
                    exc,
                )
        audit.serial_burned(self.name, format_serial(serial), str(last_exc))
        msg = f"Failed to sign certificate: {last_exc}"
        raise SigningError(msg, field=format_serial(serial)) from last_exc

    def _commit(
        self,
        cert: x509.Certificate,
        serial: int,
        approved: ApprovedExtensionSet,
        *,
        request_id: str = "",
    ) -> IssuedCertificate:
        """Record the signed certificate in the ledger."""
        issued = IssuedCertificate(
            certificate=cert,
            serial_number=serial,
            profile=approved.profile,
            extensions=approved,
        )
        entry = LedgerEntry(
            serial_number=serial,
            subject=cert.subject.rfc4514_string(),
            status=LedgerStatus.VALID,
            issued_at=cert.not_valid_before_utc,
            expires_at=cert.not_valid_after_utc,
            profile=approved.profile,
            fingerprint=hashlib.sha256(issued.der).hexdigest(),
            certificate_pem=issued.pem,
            request_id=request_id,
        )
        try:
            self._ledger.record(entry)
        except DuplicateSerialError:
            self._halted = True
            audit.ledger_desync(self.name, issued.serial_hex)
            log.critical(
                "Serial %s already present in the ledger; authority %s halted",
                issued.serial_hex,
                self.name,
            )
            raise
        except OSError as exc:
            audit.serial_burned(self.name, issued.serial_hex, str(exc))
            msg = f"Failed to record certificate in the ledger: {exc}"
            raise EngineError(msg, field=issued.serial_hex) from exc

        self._write_newcert(issued)
        return issued

    def _write_newcert(self, issued: IssuedCertificate) -> None:
        if self._newcerts_dir is None:
            return
        try:
            self._newcerts_dir.mkdir(parents=True, exist_ok=True)
            (self._newcerts_dir / f"{issued.serial_hex}.pem").write_text(issued.pem, encoding="ascii")
        except OSError as exc:
            # Ledger already holds the PEM; this copy is informational.
            log.warning("Could not write newcerts copy of %s: %s", issued.serial_hex, exc)

    def __repr__(self) -> str:
        return f"<CertificateAuthority {self.name} kind={self.kind} state={self._state}>"


def _approve_profile(name: str, profile: CAProfileSettings) -> ApprovedExtensionSet:
    """Extension set of a profile applied as-is (self-signed certificates)."""
    return ApprovedExtensionSet(
        profile=name,
        ca=profile.ca,
        basic_constraints_critical=profile.basic_constraints_critical,
        path_length=profile.path_length if profile.ca else None,
        key_usages=frozenset(profile.key_usages),
        key_usage_critical=profile.key_usage_critical,
        extended_key_usages=frozenset(profile.extended_key_usages),
        extended_key_usage_critical=profile.extended_key_usage_critical,
        subject_key_identifier=profile.subject_key_identifier,
        authority_key_identifier=profile.authority_key_identifier,
        ocsp_url=profile.ocsp_url,
        crl_url=profile.crl_url,
    )


def _authority_key_identifier(
    issuer_certificate: x509.Certificate | None,
    issuer_public_key: CertificatePublicKeyTypes,
) -> x509.AuthorityKeyIdentifier:
    if issuer_certificate is not None:
        try:
            ski = issuer_certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        except x509.ExtensionNotFound:
            pass
        else:
            return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)
    return x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key)  # type: ignore[arg-type]
