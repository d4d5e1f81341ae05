"""Shared certificate-building helpers.

Provides key-usage and extended-key-usage mappings between config
strings and ``cryptography`` extension objects, the revocation
endpoint extensions, and hash algorithm lookup.
"""

from __future__ import annotations

import re

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtendedKeyUsageOID

from pkiforge.core.errors import PolicyViolation

# ---------------------------------------------------------------------------
# Key usage / EKU mappings
# ---------------------------------------------------------------------------

KEY_USAGE_FIELDS = (
    "digital_signature",
    "content_commitment",
    "key_encipherment",
    "data_encipherment",
    "key_agreement",
    "key_cert_sign",
    "crl_sign",
    "encipher_only",
    "decipher_only",
)

_EKU_OIDS = {
    "server_auth": ExtendedKeyUsageOID.SERVER_AUTH,
    "client_auth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "code_signing": ExtendedKeyUsageOID.CODE_SIGNING,
    "email_protection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "time_stamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "ocsp_signing": ExtendedKeyUsageOID.OCSP_SIGNING,
}

_EKU_NAMES = {oid: name for name, oid in _EKU_OIDS.items()}

_DOTTED_OID_RE = re.compile(r"^\d+(\.\d+)+$")

_HASH_ALGORITHMS: dict[str, hashes.HashAlgorithm] = {
    "sha256": hashes.SHA256(),
    "sha384": hashes.SHA384(),
    "sha512": hashes.SHA512(),
}


def hash_algorithm(name: str) -> hashes.HashAlgorithm:
    """Return the hash for *name*, falling back to SHA-256."""
    return _HASH_ALGORITHMS.get(name, hashes.SHA256())


def build_key_usage(usages: tuple[str, ...] | frozenset[str]) -> x509.KeyUsage:
    """Build an :class:`x509.KeyUsage` extension from config strings."""
    usage_set = set(usages)
    ka = "key_agreement" in usage_set
    return x509.KeyUsage(
        digital_signature="digital_signature" in usage_set,
        content_commitment="content_commitment" in usage_set,
        key_encipherment="key_encipherment" in usage_set,
        data_encipherment="data_encipherment" in usage_set,
        key_agreement=ka,
        key_cert_sign="key_cert_sign" in usage_set,
        crl_sign="crl_sign" in usage_set,
        encipher_only="encipher_only" in usage_set if ka else False,
        decipher_only="decipher_only" in usage_set if ka else False,
    )


def key_usage_names(key_usage: x509.KeyUsage) -> frozenset[str]:
    """Return the config strings of the bits set in *key_usage*."""
    names = set()
    for name in KEY_USAGE_FIELDS:
        if name in ("encipher_only", "decipher_only") and not key_usage.key_agreement:
            continue
        if getattr(key_usage, name):
            names.add(name)
    return frozenset(names)


def build_eku(ekus: tuple[str, ...] | frozenset[str]) -> x509.ExtendedKeyUsage:
    """Build an :class:`x509.ExtendedKeyUsage` extension from config strings.

    Dotted OIDs are accepted as-is so unusual purposes requested in a
    CSR survive a round trip.
    """
    oids = []
    for name in ekus:
        oid = _EKU_OIDS.get(name)
        if oid is None and _DOTTED_OID_RE.match(name):
            oid = x509.ObjectIdentifier(name)
        if oid is None:
            msg = f"Unknown extended key usage '{name}'; supported: {sorted(_EKU_OIDS)}"
            raise PolicyViolation(msg, field="extended_key_usage")
        oids.append(oid)
    return x509.ExtendedKeyUsage(oids)


def eku_names(eku: x509.ExtendedKeyUsage) -> frozenset[str]:
    """Return config strings (or dotted OIDs) for the purposes in *eku*."""
    return frozenset(_EKU_NAMES.get(oid, oid.dotted_string) for oid in eku)


# ---------------------------------------------------------------------------
# Revocation endpoints
# ---------------------------------------------------------------------------


def build_authority_info_access(ocsp_url: str) -> x509.AuthorityInformationAccess:
    """Build an AIA extension pointing at an OCSP responder."""
    return x509.AuthorityInformationAccess(
        [
            x509.AccessDescription(
                AuthorityInformationAccessOID.OCSP,
                x509.UniformResourceIdentifier(ocsp_url),
            ),
        ],
    )


def build_crl_distribution_points(crl_url: str) -> x509.CRLDistributionPoints:
    """Build a CRL distribution point extension for a single URI."""
    return x509.CRLDistributionPoints(
        [
            x509.DistributionPoint(
                full_name=[x509.UniformResourceIdentifier(crl_url)],
                relative_name=None,
                reasons=None,
                crl_issuer=None,
            ),
        ],
    )
