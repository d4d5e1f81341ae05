"""On-disk layout of one authority.

::

    <directory>/
        private/<name>.key.pem     authority key (0400)
        certs/<name>.cert.pem      authority certificate
        certs/chain.cert.pem       issuer certificates, nearest first
        csr/<name>.csr.pem         pending signing request (subordinate)
        crl/<name>.crl.pem         latest CRL
        newcerts/<SERIAL>.pem      copy of every issued certificate
        final-certs/               end-entity keys, certificates, bundles
        serial                     next serial (hex)
        crlnumber                  next CRL number (hex)
        ledger.jsonl               issuance ledger
        authority.json             per-authority profile augmentations
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from pkiforge.ca.authority import CertificateAuthority
from pkiforge.ca.keys import load_private_key, write_private_key
from pkiforge.core.errors import AuthorityStateError
from pkiforge.core.types import AuthorityState
from pkiforge.models.request import SigningRequest
from pkiforge.repositories.ledger import IssuanceLedger
from pkiforge.repositories.serial import SerialAllocator

if TYPE_CHECKING:
    from pkiforge.ca.policy import PolicyEngine
    from pkiforge.config.settings import AuthoritySettings, CAProfileSettings, CASettings
    from pkiforge.models.key_pair import KeyPair
    from pkiforge.models.revocation import RevocationList

log = logging.getLogger(__name__)

_SUBDIRS = ("certs", "crl", "csr", "newcerts", "final-certs")
_PRIVATE_DIR_MODE = 0o700
_RESPONDER_NAME = "ocsp"


class AuthorityStore:
    """Files backing one authority, rooted at *directory*."""

    def __init__(self, directory: str | Path, name: str) -> None:
        self.directory = Path(directory)
        self.name = name

    # -- paths ---------------------------------------------------------------

    @property
    def key_path(self) -> Path:
        return self.directory / "private" / f"{self.name}.key.pem"

    @property
    def cert_path(self) -> Path:
        return self.directory / "certs" / f"{self.name}.cert.pem"

    @property
    def chain_path(self) -> Path:
        return self.directory / "certs" / "chain.cert.pem"

    @property
    def csr_path(self) -> Path:
        return self.directory / "csr" / f"{self.name}.csr.pem"

    @property
    def crl_path(self) -> Path:
        return self.directory / "crl" / f"{self.name}.crl.pem"

    @property
    def newcerts_dir(self) -> Path:
        return self.directory / "newcerts"

    @property
    def final_certs_dir(self) -> Path:
        return self.directory / "final-certs"

    @property
    def serial_path(self) -> Path:
        return self.directory / "serial"

    @property
    def crlnumber_path(self) -> Path:
        return self.directory / "crlnumber"

    @property
    def ledger_path(self) -> Path:
        return self.directory / "ledger.jsonl"

    @property
    def metadata_path(self) -> Path:
        return self.directory / "authority.json"

    @property
    def responder_cert_path(self) -> Path:
        return self.directory / "certs" / f"{_RESPONDER_NAME}.cert.pem"

    @property
    def responder_key_path(self) -> Path:
        return self.directory / "private" / f"{_RESPONDER_NAME}.key.pem"

    @property
    def initialized(self) -> bool:
        return self.serial_path.exists() and self.ledger_path.exists()

    # -- provisioning ----------------------------------------------------------

    def initialize(self) -> None:
        """Create the directory tree, serial counters and empty ledger.

        Existing files are left untouched.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        for sub in _SUBDIRS:
            (self.directory / sub).mkdir(exist_ok=True)
        private = self.directory / "private"
        private.mkdir(exist_ok=True)
        private.chmod(_PRIVATE_DIR_MODE)
        self.serials().initialize()
        self.crl_numbers().initialize()
        self.ledger().initialize()
        log.info("Initialized authority directory %s", self.directory)

    def serials(self) -> SerialAllocator:
        return SerialAllocator(self.serial_path, authority=self.name)

    def crl_numbers(self) -> SerialAllocator:
        return SerialAllocator(self.crlnumber_path, authority=self.name)

    def ledger(self) -> IssuanceLedger:
        return IssuanceLedger(self.ledger_path)

    # -- key and certificates --------------------------------------------------

    def save_key(self, key_pair: KeyPair) -> Path:
        return write_private_key(key_pair, self.key_path)

    def load_key(self) -> KeyPair | None:
        if not self.key_path.exists():
            return None
        return load_private_key(self.key_path)

    def save_certificate(self, cert: x509.Certificate, chain: tuple[x509.Certificate, ...] = ()) -> Path:
        _write_certificates(self.cert_path, (cert,))
        if chain:
            _write_certificates(self.chain_path, chain)
        return self.cert_path

    def load_certificate(self) -> x509.Certificate | None:
        if not self.cert_path.exists():
            return None
        return x509.load_pem_x509_certificate(self.cert_path.read_bytes())

    def load_chain(self) -> tuple[x509.Certificate, ...]:
        if not self.chain_path.exists():
            return ()
        return tuple(x509.load_pem_x509_certificates(self.chain_path.read_bytes()))

    def save_csr(self, request: SigningRequest) -> Path:
        self.csr_path.parent.mkdir(parents=True, exist_ok=True)
        self.csr_path.write_bytes(request.to_pem())
        return self.csr_path

    def load_csr(self) -> SigningRequest | None:
        if not self.csr_path.exists():
            return None
        return SigningRequest.from_pem(self.csr_path.read_bytes())

    def save_crl(self, revocation_list: RevocationList) -> Path:
        self.crl_path.parent.mkdir(parents=True, exist_ok=True)
        self.crl_path.write_bytes(revocation_list.pem)
        log.info("CRL written to %s", self.crl_path)
        return self.crl_path

    # -- delegated OCSP responder --------------------------------------------

    def save_responder(self, cert: x509.Certificate, key_pair: KeyPair) -> None:
        write_private_key(key_pair, self.responder_key_path)
        _write_certificates(self.responder_cert_path, (cert,))

    def load_responder(self) -> tuple[x509.Certificate, KeyPair] | None:
        if not (self.responder_cert_path.exists() and self.responder_key_path.exists()):
            return None
        cert = x509.load_pem_x509_certificate(self.responder_cert_path.read_bytes())
        return cert, load_private_key(self.responder_key_path)

    # -- metadata ----------------------------------------------------------------

    def load_metadata(self) -> dict:
        if not self.metadata_path.exists():
            return {}
        return json.loads(self.metadata_path.read_text(encoding="utf-8"))

    def save_profile_overrides(self, overrides: dict[str, CAProfileSettings]) -> None:
        """Persist the revocation endpoints each overridden profile carries."""
        metadata = self.load_metadata()
        metadata["revocation_endpoints"] = {
            name: {"ocsp_url": profile.ocsp_url, "crl_url": profile.crl_url}
            for name, profile in overrides.items()
        }
        self.metadata_path.write_text(json.dumps(metadata, indent=2, sort_keys=True), encoding="utf-8")

    def _profile_overrides(self, policy_engine: PolicyEngine) -> dict[str, CAProfileSettings]:
        endpoints = self.load_metadata().get("revocation_endpoints", {})
        return {
            name: replace(
                policy_engine.profile(name),
                ocsp_url=values.get("ocsp_url"),
                crl_url=values.get("crl_url"),
            )
            for name, values in endpoints.items()
        }

    # -- assembly ----------------------------------------------------------------

    def load_authority(
        self,
        settings: AuthoritySettings,
        ca_settings: CASettings,
        policy_engine: PolicyEngine,
    ) -> CertificateAuthority:
        """Build the authority from whatever state is on disk.

        Raises
        ------
        AuthorityStateError
            If the directory has not been initialized.

        """
        if not self.initialized:
            msg = f"Authority directory {self.directory} is not initialized; run 'init' first"
            raise AuthorityStateError(msg, authority=settings.name, operation="load")

        authority = CertificateAuthority(
            settings.name,
            settings.kind,
            policy=settings.policy,
            profile=settings.profile,
            ca_settings=ca_settings,
            policy_engine=policy_engine,
            serials=self.serials(),
            ledger=self.ledger(),
            key_pair=self.load_key(),
            certificate=self.load_certificate(),
            chain=self.load_chain(),
            profile_overrides=self._profile_overrides(policy_engine),
            newcerts_dir=self.newcerts_dir,
        )
        pending = self.load_csr()
        if pending is not None and authority.state != AuthorityState.ACTIVE:
            authority.resume_pending(pending)
        return authority


def _write_certificates(path: Path, certs: tuple[x509.Certificate, ...]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs))
