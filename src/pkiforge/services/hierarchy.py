"""Two-tier PKI environment.

Wires the engine components to the on-disk working tree and exposes
one method per front-end command: ``init``, ``create_root``,
``create_sub``, ``gen_crl``, ``create_final``, ``setup_ocsp``,
``check_ocsp``, ``create_smime``, ``cross_sign``, ``revoke`` and
``status``.

Authorities are loaded lazily from their directories and cached for
the lifetime of the environment, so concurrent callers share one
instance (and one lock) per authority.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509 import ocsp

from pkiforge.ca.crl import RevocationManager
from pkiforge.ca.keys import KeyMaterialProvider, write_private_key
from pkiforge.ca.policy import PolicyEngine
from pkiforge.ca.storage import AuthorityStore
from pkiforge.core.errors import (
    AlreadySignedError,
    AuthorityStateError,
    NotFoundError,
    PolicyViolation,
)
from pkiforge.core.serials import format_serial
from pkiforge.core.types import AuthorityState, CertStatus, KeyAlgorithm, KeyPurpose
from pkiforge.models.request import SigningRequest
from pkiforge.models.subject import Subject
from pkiforge.services.ocsp import OCSPResponder

if TYPE_CHECKING:
    from datetime import datetime

    from pkiforge.ca.authority import CertificateAuthority
    from pkiforge.config.settings import PkiforgeSettings
    from pkiforge.core.types import RevocationReason
    from pkiforge.models.certificate import IssuedCertificate
    from pkiforge.models.key_pair import KeyPair
    from pkiforge.models.ledger import LedgerEntry
    from pkiforge.models.revocation import RevocationList

log = logging.getLogger(__name__)

ROOT = "root"
SUB = "sub"

_HOSTNAME_RE = re.compile(r"^(\*\.)?([A-Za-z0-9-]{1,63}\.)+[A-Za-z0-9-]{1,63}$")
_BUNDLE_MODE = 0o400

_OCSP_STATUS = {
    ocsp.OCSPCertStatus.GOOD: CertStatus.GOOD,
    ocsp.OCSPCertStatus.REVOKED: CertStatus.REVOKED,
    ocsp.OCSPCertStatus.UNKNOWN: CertStatus.UNKNOWN,
}


@dataclass(frozen=True)
class IssuanceResult:
    """An issued certificate and the files written for it."""

    issued: IssuedCertificate
    files: dict[str, Path] = field(default_factory=dict)


@dataclass(frozen=True)
class OCSPCheck:
    """Outcome of an in-process OCSP query for a certificate file."""

    authority: str
    serial_number: int
    response_status: ocsp.OCSPResponseStatus
    status: CertStatus | None = None
    produced_at: datetime | None = None
    this_update: datetime | None = None
    next_update: datetime | None = None
    revocation_time: datetime | None = None
    revocation_reason: x509.ReasonFlags | None = None
    signature_valid: bool = False

    @property
    def serial_hex(self) -> str:
        return format_serial(self.serial_number)


class PKIEnvironment:
    """Root and subordinate authorities under one working directory.

    Parameters
    ----------
    settings:
        Full settings tree.
    workdir:
        Overrides ``settings.pki.workdir``.

    """

    def __init__(self, settings: PkiforgeSettings, workdir: str | Path | None = None) -> None:
        self.settings = settings
        self.workdir = Path(workdir) if workdir is not None else Path(settings.pki.workdir)
        self.keys = KeyMaterialProvider(settings.keys)
        self.policy_engine = PolicyEngine(settings.ca.policies, settings.ca.profiles)
        self._stores = {
            key: AuthorityStore(self.workdir / auth.directory, auth.name)
            for key, auth in settings.authorities.items()
        }
        self._authorities: dict[str, CertificateAuthority] = {}
        self._revocations: RevocationManager | None = None
        self._lock = threading.Lock()

    # -- wiring -------------------------------------------------------------

    def store(self, key: str) -> AuthorityStore:
        try:
            return self._stores[key]
        except KeyError:
            msg = f"Unknown authority '{key}'; expected one of {sorted(self._stores)}"
            raise NotFoundError(msg, field="authority") from None

    def authority(self, key: str) -> CertificateAuthority:
        """Return the (cached) authority for *key*, loading it from disk."""
        with self._lock:
            authority = self._authorities.get(key)
            if authority is None:
                authority = self.store(key).load_authority(
                    self.settings.authorities[key],
                    self.settings.ca,
                    self.policy_engine,
                )
                self._authorities[key] = authority
            return authority

    @property
    def revocations(self) -> RevocationManager:
        with self._lock:
            if self._revocations is None:
                self._revocations = RevocationManager(
                    self.settings.crl,
                    {
                        self.settings.authorities[key].name: store.crl_numbers()
                        for key, store in self._stores.items()
                    },
                )
            return self._revocations

    def responder(self, key: str) -> OCSPResponder:
        return OCSPResponder(self.settings.ocsp, self.store(key).load_responder())

    def _base_subject(self, **overrides: str | None) -> Subject:
        s = self.settings.pki.subject
        values: dict[str, str | None] = {
            "country": s.country,
            "state": s.state,
            "locality": s.locality,
            "organization": s.organization,
            "common_name": s.common_name,
        }
        values.update(overrides)
        return Subject(**values)

    def _generate(self, purpose: KeyPurpose) -> KeyPair:
        algorithm = KeyAlgorithm(self.settings.keys.algorithm)
        return self.keys.generate(algorithm, self.keys.default_size(algorithm, purpose), purpose)

    def _authority_key(self, key: str) -> KeyPair:
        """Existing authority key, or a freshly generated and persisted one."""
        store = self.store(key)
        existing = store.load_key()
        if existing is not None:
            return existing
        key_pair = self._generate(KeyPurpose.CA)
        store.save_key(key_pair)
        return key_pair

    # -- commands -------------------------------------------------------------

    def init(self) -> list[Path]:
        """Provision every authority directory (idempotent)."""
        self.workdir.mkdir(parents=True, exist_ok=True)
        for store in self._stores.values():
            store.initialize()
        with self._lock:
            self._authorities.clear()
            self._revocations = None
        return [store.directory for store in self._stores.values()]

    def create_root(self) -> IssuanceResult:
        root = self.authority(ROOT)
        if root.state == AuthorityState.ACTIVE:
            msg = "Root certificate has already been issued"
            raise AlreadySignedError(msg, operation="issue_self_signed", authority=root.name)
        key_pair = self._authority_key(ROOT)
        issued = root.issue_self_signed(
            self._base_subject(),
            self.settings.pki.root_validity_days,
            key_pair=key_pair,
        )
        store = self.store(ROOT)
        path = store.save_certificate(issued.certificate)
        log.info("Root certificate written to %s", path)
        return IssuanceResult(issued, {"certificate": path, "key": store.key_path})

    def create_sub(self) -> IssuanceResult:
        root = self.authority(ROOT)
        sub = self.authority(SUB)
        if sub.state == AuthorityState.ACTIVE:
            msg = "Subordinate certificate has already been issued"
            raise AlreadySignedError(msg, operation="create_sub", authority=sub.name)

        sub_store = self.store(SUB)
        if sub.state == AuthorityState.UNINITIALIZED:
            request = sub.create_signing_request(
                self._base_subject(),
                key_pair=self._authority_key(SUB),
            )
            sub_store.save_csr(request)
        else:
            request = sub.pending_request  # type: ignore[assignment]

        sub_settings = self.settings.authorities[SUB]
        issued = root.issue(request, sub_settings.profile, self.settings.pki.sub_validity_days)
        chain = (root.certificate, *root.chain)
        sub.install_certificate(issued.certificate, chain)
        path = sub_store.save_certificate(issued.certificate, chain)
        sub_store.csr_path.unlink(missing_ok=True)
        log.info("Subordinate certificate written to %s", path)
        return IssuanceResult(
            issued,
            {"certificate": path, "chain": sub_store.chain_path, "key": sub_store.key_path},
        )

    def gen_crl(
        self,
        key: str = ROOT,
        this_update: datetime | None = None,
        next_update: datetime | None = None,
    ) -> tuple[RevocationList, Path]:
        authority = self.authority(key)
        revocation_list = self.revocations.build_crl(authority, this_update, next_update)
        return revocation_list, self.store(key).save_crl(revocation_list)

    def create_final(self, name: str) -> IssuanceResult:
        """Issue a ``usr_cert`` end-entity certificate for *name*."""
        sub = self.authority(SUB)
        sans: list[x509.GeneralName] = []
        if _HOSTNAME_RE.match(name):
            sans.append(x509.DNSName(name))
        with self._generate(KeyPurpose.END_ENTITY) as key_pair:
            return self._issue_end_entity(
                sub,
                key_pair,
                self._base_subject(common_name=name),
                "usr_cert",
                name,
                sans,
            )

    def create_smime(self, email: str, password: bytes | None = None) -> IssuanceResult:
        """Issue an S/MIME certificate and bundle it as PKCS#12."""
        sub = self.authority(SUB)
        subject = self._base_subject(common_name=email, email=email)
        with self._generate(KeyPurpose.END_ENTITY) as key_pair:
            result = self._issue_end_entity(
                sub,
                key_pair,
                subject,
                "smime_ext",
                email,
                [x509.RFC822Name(email)],
            )
            encryption: serialization.KeySerializationEncryption
            if password:
                encryption = serialization.BestAvailableEncryption(password)
            else:
                encryption = serialization.NoEncryption()
            bundle = pkcs12.serialize_key_and_certificates(
                email.encode("utf-8"),
                key_pair.private_key,  # type: ignore[arg-type]
                result.issued.certificate,
                [sub.certificate, *sub.chain],
                encryption,
            )
        p12_path = self.store(SUB).final_certs_dir / f"{email}.p12"
        _write_secret(p12_path, bundle)
        log.info("PKCS#12 bundle written to %s", p12_path)
        return IssuanceResult(result.issued, {**result.files, "pkcs12": p12_path})

    def setup_ocsp(self) -> IssuanceResult:
        """Issue the delegated responder and add revocation endpoints to ``usr_cert``."""
        sub = self.authority(SUB)
        store = self.store(SUB)
        pki = self.settings.pki
        with self._generate(KeyPurpose.END_ENTITY) as key_pair:
            request = _signing_request(Subject(common_name=pki.ocsp_responder_common_name), key_pair)
            issued = sub.issue(request, "ocsp_ext", pki.final_validity_days)
            store.save_responder(issued.certificate, key_pair)

        sub.enable_revocation_endpoints(pki.ocsp_url, pki.crl_url, profile_name="usr_cert")
        store.save_profile_overrides(sub.profile_overrides)
        return IssuanceResult(
            issued,
            {"certificate": store.responder_cert_path, "key": store.responder_key_path},
        )

    def check_ocsp(self, cert_path: str | Path) -> OCSPCheck:
        """Query the issuing authority's responder for a certificate file."""
        try:
            cert = x509.load_pem_x509_certificate(Path(cert_path).read_bytes())
        except FileNotFoundError:
            msg = f"Certificate file not found: {cert_path}"
            raise NotFoundError(msg, operation="check_ocsp", field=str(cert_path)) from None
        except OSError as exc:
            msg = f"Cannot read certificate file {cert_path}: {exc}"
            raise NotFoundError(msg, operation="check_ocsp", field=str(cert_path)) from exc
        except ValueError as exc:
            msg = f"Not a PEM certificate: {cert_path}: {exc}"
            raise PolicyViolation(msg, operation="check_ocsp", field=str(cert_path)) from exc

        key, authority = self._find_issuer(cert)
        request = (
            ocsp.OCSPRequestBuilder()
            .add_certificate(cert, authority.certificate, hashes.SHA1())  # noqa: S303
            .build()
        )
        response_der = self.responder(key).handle_request(
            authority,
            request.public_bytes(serialization.Encoding.DER),
        )
        response = ocsp.load_der_ocsp_response(response_der)
        if response.response_status != ocsp.OCSPResponseStatus.SUCCESSFUL:
            return OCSPCheck(authority.name, cert.serial_number, response.response_status)

        signer = next(iter(response.certificates), authority.certificate)
        return OCSPCheck(
            authority=authority.name,
            serial_number=response.serial_number,
            response_status=response.response_status,
            status=_OCSP_STATUS[response.certificate_status],
            produced_at=response.produced_at_utc,
            this_update=response.this_update_utc,
            next_update=response.next_update_utc,
            revocation_time=response.revocation_time_utc,
            revocation_reason=response.revocation_reason,
            signature_valid=_verify_response(response, signer),
        )

    def cross_sign(self) -> IssuanceResult:
        """Cross-certify the subordinate's key under the root with ``v3_cross``."""
        root = self.authority(ROOT)
        sub = self.authority(SUB)
        subject = self._base_subject(common_name=self.settings.pki.cross_common_name)
        issued = root.cross_sign(
            sub.key_pair.public_key,
            subject,
            self.settings.pki.sub_validity_days,
        )
        path = self.store(SUB).directory / "certs" / "cross.cert.pem"
        path.write_text(issued.pem, encoding="ascii")
        log.info("Cross certificate written to %s", path)
        return IssuanceResult(issued, {"certificate": path})

    def revoke(
        self,
        serial: int,
        reason: RevocationReason | str | int | None = None,
        key: str = SUB,
    ) -> LedgerEntry:
        return self.authority(key).revoke(serial, reason)

    def status(self, key: str = SUB) -> list[LedgerEntry]:
        return list(self.authority(key).ledger.all_entries())

    # -- helpers ------------------------------------------------------------

    def _issue_end_entity(  # noqa: PLR0913
        self,
        authority: CertificateAuthority,
        key_pair: KeyPair,
        subject: Subject,
        profile: str,
        stem: str,
        sans: list[x509.GeneralName],
    ) -> IssuanceResult:
        """Issue, then write key, CSR and certificate under ``final-certs/``.

        Nothing is written when the authority rejects the request.
        """
        request = _signing_request(subject, key_pair, sans)
        issued = authority.issue(request, profile, self.settings.pki.final_validity_days)
        out = self.store(SUB).final_certs_dir
        key_path = write_private_key(key_pair, out / f"{stem}.key.pem")
        csr_path = out / f"{stem}.csr.pem"
        csr_path.write_bytes(request.to_pem())
        cert_path = out / f"{stem}.cert.pem"
        cert_path.write_text(issued.pem, encoding="ascii")
        log.info("Certificate written to %s", cert_path)
        return IssuanceResult(issued, {"certificate": cert_path, "key": key_path, "csr": csr_path})

    def _find_issuer(self, cert: x509.Certificate) -> tuple[str, CertificateAuthority]:
        for key in self._stores:
            try:
                authority = self.authority(key)
            except AuthorityStateError:
                continue
            if authority.state != AuthorityState.ACTIVE:
                continue
            try:
                cert.verify_directly_issued_by(authority.certificate)
            except (ValueError, TypeError, InvalidSignature):
                continue
            return key, authority
        msg = f"No local authority issued certificate {format_serial(cert.serial_number)}"
        raise NotFoundError(msg, operation="check_ocsp", field=format_serial(cert.serial_number))


def _signing_request(
    subject: Subject,
    key_pair: KeyPair,
    sans: list[x509.GeneralName] | None = None,
) -> SigningRequest:
    """Build and self-sign a CSR, as a requester would."""
    builder = x509.CertificateSigningRequestBuilder().subject_name(subject.to_x509_name())
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
    csr = builder.sign(key_pair.private_key, hashes.SHA256())  # type: ignore[arg-type]
    return SigningRequest.from_csr(csr)


def _write_secret(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.chmod(0o600)
        path.unlink()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _BUNDLE_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(data)


def _verify_response(response: ocsp.OCSPResponse, signer: x509.Certificate) -> bool:
    """Check the response signature against *signer*'s public key."""
    public_key = signer.public_key()
    algorithm = response.signature_hash_algorithm
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(
                response.signature,
                response.tbs_response_bytes,
                padding.PKCS1v15(),
                algorithm,  # type: ignore[arg-type]
            )
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(
                response.signature,
                response.tbs_response_bytes,
                ec.ECDSA(algorithm),  # type: ignore[arg-type]
            )
        else:
            return False
    except InvalidSignature:
        return False
    return True
