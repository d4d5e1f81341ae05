"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the engine actually reads.

Access pattern::

    from pkiforge.config import get_config

    keys = get_config().settings.keys
    print(keys.algorithm, keys.ca_key_size)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

# ---------------------------------------------------------------------------
# PKI environment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubjectSettings:
    """Distinguished-name defaults used by every generated request."""

    country: str
    state: str
    locality: str
    organization: str
    common_name: str


@dataclass(frozen=True)
class PkiSettings:
    """Working tree, validity periods and revocation endpoints."""

    workdir: str
    subject: SubjectSettings
    root_validity_days: int
    sub_validity_days: int
    final_validity_days: int
    ocsp_url: str
    crl_url: str
    smime_email: str
    cross_common_name: str
    ocsp_responder_common_name: str


def _build_pki(data: dict | None) -> PkiSettings:
    d = data or {}
    s = d.get("subject") or {}
    return PkiSettings(
        workdir=d.get("workdir", "./pki_env"),
        subject=SubjectSettings(
            country=s.get("country", "FR"),
            state=s.get("state", "Île-de-France"),
            locality=s.get("locality", "Paris"),
            organization=s.get("organization", "td1-sup-de-vinci"),
            common_name=s.get("common_name", "AB_FM.sup-de-vinci.local"),
        ),
        root_validity_days=d.get("root_validity_days", 5475),
        sub_validity_days=d.get("sub_validity_days", 3650),
        final_validity_days=d.get("final_validity_days", 365),
        ocsp_url=d.get("ocsp_url", "http://ocsp.sup-de-vinci.local"),
        crl_url=d.get("crl_url", "http://crl.sup-de-vinci.local/root.crl.pem"),
        smime_email=d.get("smime_email", "user@sup-de-vinci.local"),
        cross_common_name=d.get("cross_common_name", "Cross-Signed"),
        ocsp_responder_common_name=d.get("ocsp_responder_common_name", "OCSP-Responder"),
    )


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeySettings:
    """Key generation defaults and policy-enforced minimum sizes."""

    algorithm: str
    ca_key_size: int
    end_entity_key_size: int
    min_ca_rsa_key_size: int
    min_end_entity_rsa_key_size: int
    min_ec_key_size: int


def _build_keys(data: dict | None) -> KeySettings:
    d = data or {}
    return KeySettings(
        algorithm=d.get("algorithm", "rsa"),
        ca_key_size=d.get("ca_key_size", 4096),
        end_entity_key_size=d.get("end_entity_key_size", 2048),
        min_ca_rsa_key_size=d.get("min_ca_rsa_key_size", 4096),
        min_end_entity_rsa_key_size=d.get("min_end_entity_rsa_key_size", 2048),
        min_ec_key_size=d.get("min_ec_key_size", 256),
    )


# ---------------------------------------------------------------------------
# CA: extension profiles and issuance policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CAProfileSettings:
    """Extension profile applied to a certificate at signing time.

    ``ca=None`` omits the basicConstraints extension entirely.
    ``path_length=None`` on a CA profile means "one less than the
    issuer allows".
    """

    ca: bool | None
    basic_constraints_critical: bool
    path_length: int | None
    key_usages: tuple[str, ...]
    key_usage_critical: bool
    extended_key_usages: tuple[str, ...]
    extended_key_usage_critical: bool
    subject_key_identifier: bool
    authority_key_identifier: bool
    ocsp_url: str | None
    crl_url: str | None
    copy_subject_alt_names: bool


@dataclass(frozen=True)
class PolicySettings:
    """Named issuance policy (subject field rules and allowed profiles).

    ``fields`` maps a subject attribute to ``match`` (must equal the
    issuer's value), ``supplied`` (must be present) or ``optional``.
    ``ca_profiles`` whitelists the profiles allowed to grant CA:true.
    """

    fields: dict[str, str]
    allowed_profiles: tuple[str, ...]
    ca_profiles: tuple[str, ...]
    unknown_extensions: str
    allowed_extension_oids: tuple[str, ...]


@dataclass(frozen=True)
class CASettings:
    """Signing parameters shared by every authority."""

    hash_algorithm: str
    validity_overflow: str
    signing_retries: int
    profiles: dict[str, CAProfileSettings]
    policies: dict[str, PolicySettings]


def _profile(**overrides: Any) -> CAProfileSettings:  # noqa: ANN401
    base = CAProfileSettings(
        ca=None,
        basic_constraints_critical=True,
        path_length=None,
        key_usages=(),
        key_usage_critical=False,
        extended_key_usages=(),
        extended_key_usage_critical=False,
        subject_key_identifier=True,
        authority_key_identifier=False,
        ocsp_url=None,
        crl_url=None,
        copy_subject_alt_names=True,
    )
    return replace(base, **overrides)


def default_profiles(ocsp_url: str | None = None) -> dict[str, CAProfileSettings]:
    """Return the built-in extension profiles.

    Mirrors the ``v3_ca``, ``v3_intermediate``, ``usr_cert``,
    ``ocsp_ext``, ``smime_ext`` and ``v3_cross`` sections of the
    classic two-tier OpenSSL layout.
    """
    ca_usages = ("digital_signature", "crl_sign", "key_cert_sign")
    return {
        "v3_ca": _profile(
            ca=True,
            path_length=2,
            key_usages=ca_usages,
            key_usage_critical=True,
            authority_key_identifier=True,
        ),
        "v3_intermediate": _profile(
            ca=True,
            path_length=0,
            key_usages=ca_usages,
            key_usage_critical=True,
            authority_key_identifier=True,
        ),
        "usr_cert": _profile(
            ca=False,
            key_usages=("digital_signature", "key_encipherment"),
            extended_key_usages=("server_auth", "client_auth"),
        ),
        "ocsp_ext": _profile(
            ca=False,
            basic_constraints_critical=False,
            key_usages=("content_commitment", "digital_signature", "key_encipherment"),
            extended_key_usages=("ocsp_signing",),
            extended_key_usage_critical=True,
            subject_key_identifier=False,
        ),
        "smime_ext": _profile(
            key_usages=("digital_signature", "key_encipherment"),
            extended_key_usages=("email_protection",),
            authority_key_identifier=True,
        ),
        "v3_cross": _profile(
            ca=True,
            path_length=0,
            key_usages=("key_cert_sign", "crl_sign"),
            subject_key_identifier=False,
            ocsp_url=ocsp_url,
        ),
    }


def default_policies() -> dict[str, PolicySettings]:
    """Return the built-in ``strict`` and ``loose`` policies."""
    return {
        "strict": PolicySettings(
            fields={
                "country": "match",
                "state": "match",
                "organization": "match",
                "common_name": "supplied",
            },
            allowed_profiles=("v3_intermediate", "v3_cross"),
            ca_profiles=("v3_intermediate", "v3_cross"),
            unknown_extensions="reject",
            allowed_extension_oids=(),
        ),
        "loose": PolicySettings(
            fields={
                "country": "optional",
                "state": "optional",
                "organization": "optional",
                "common_name": "supplied",
            },
            allowed_profiles=("usr_cert", "ocsp_ext", "smime_ext", "v3_cross"),
            ca_profiles=("v3_cross",),
            unknown_extensions="drop",
            allowed_extension_oids=(),
        ),
    }


def _build_profile(pdata: dict, base: CAProfileSettings | None) -> CAProfileSettings:
    b = base or _profile()
    return CAProfileSettings(
        ca=pdata.get("ca", b.ca),
        basic_constraints_critical=pdata.get(
            "basic_constraints_critical", b.basic_constraints_critical
        ),
        path_length=pdata.get("path_length", b.path_length),
        key_usages=tuple(pdata.get("key_usages", b.key_usages)),
        key_usage_critical=pdata.get("key_usage_critical", b.key_usage_critical),
        extended_key_usages=tuple(pdata.get("extended_key_usages", b.extended_key_usages)),
        extended_key_usage_critical=pdata.get(
            "extended_key_usage_critical", b.extended_key_usage_critical
        ),
        subject_key_identifier=pdata.get("subject_key_identifier", b.subject_key_identifier),
        authority_key_identifier=pdata.get(
            "authority_key_identifier", b.authority_key_identifier
        ),
        ocsp_url=pdata.get("ocsp_url", b.ocsp_url),
        crl_url=pdata.get("crl_url", b.crl_url),
        copy_subject_alt_names=pdata.get("copy_subject_alt_names", b.copy_subject_alt_names),
    )


def _build_policy(pdata: dict, base: PolicySettings | None) -> PolicySettings:
    if base is None:
        base = PolicySettings(
            fields={"common_name": "supplied"},
            allowed_profiles=(),
            ca_profiles=(),
            unknown_extensions="reject",
            allowed_extension_oids=(),
        )
    fields = dict(base.fields)
    fields.update(pdata.get("fields") or {})
    return PolicySettings(
        fields=fields,
        allowed_profiles=tuple(pdata.get("allowed_profiles", base.allowed_profiles)),
        ca_profiles=tuple(pdata.get("ca_profiles", base.ca_profiles)),
        unknown_extensions=pdata.get("unknown_extensions", base.unknown_extensions),
        allowed_extension_oids=tuple(
            pdata.get("allowed_extension_oids", base.allowed_extension_oids)
        ),
    )


def _build_ca(data: dict | None, *, ocsp_url: str | None = None) -> CASettings:
    d = data or {}

    profiles = default_profiles(ocsp_url)
    for name, pdata in (d.get("profiles") or {}).items():
        profiles[name] = _build_profile(pdata or {}, profiles.get(name))

    policies = default_policies()
    for name, pdata in (d.get("policies") or {}).items():
        policies[name] = _build_policy(pdata or {}, policies.get(name))

    return CASettings(
        hash_algorithm=d.get("hash_algorithm", "sha256"),
        validity_overflow=d.get("validity_overflow", "reject"),
        signing_retries=d.get("signing_retries", 1),
        profiles=profiles,
        policies=policies,
    )


# ---------------------------------------------------------------------------
# Authorities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthoritySettings:
    """One authority of the hierarchy (directory, policy, own profile)."""

    name: str
    kind: str
    directory: str
    policy: str
    profile: str
    parent: str | None


def _build_authorities(data: dict | None) -> dict[str, AuthoritySettings]:
    d = data or {}
    root_d = d.get("root") or {}
    sub_d = d.get("sub") or {}
    return {
        "root": AuthoritySettings(
            name=root_d.get("name", "root"),
            kind="root",
            directory=root_d.get("directory", "rootCA"),
            policy=root_d.get("policy", "strict"),
            profile=root_d.get("profile", "v3_ca"),
            parent=None,
        ),
        "sub": AuthoritySettings(
            name=sub_d.get("name", "sub"),
            kind="subordinate",
            directory=sub_d.get("directory", "subCA"),
            policy=sub_d.get("policy", "loose"),
            profile=sub_d.get("profile", "v3_intermediate"),
            parent="root",
        ),
    }


# ---------------------------------------------------------------------------
# CRL
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrlSettings:
    next_update_days: int
    hash_algorithm: str


def _build_crl(data: dict | None) -> CrlSettings:
    d = data or {}
    return CrlSettings(
        next_update_days=d.get("next_update_days", 30),
        hash_algorithm=d.get("hash_algorithm", "sha256"),
    )


# ---------------------------------------------------------------------------
# OCSP
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OcspSettings:
    response_validity_seconds: int
    hash_algorithm: str


def _build_ocsp(data: dict | None) -> OcspSettings:
    d = data or {}
    return OcspSettings(
        response_validity_seconds=d.get("response_validity_seconds", 86400),
        hash_algorithm=d.get("hash_algorithm", "sha256"),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit log output settings (file, rotation)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", True),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 10485760),
            backup_count=a.get("backup_count", 5),
        ),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PkiforgeSettings:
    pki: PkiSettings
    keys: KeySettings
    ca: CASettings
    authorities: dict[str, AuthoritySettings]
    crl: CrlSettings
    ocsp: OcspSettings
    logging: LoggingSettings


def build_settings(data: dict | None) -> PkiforgeSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`PkiConfig` initialization after schema
    validation and environment-variable resolution.  An empty mapping
    yields the built-in defaults.
    """
    d = data or {}
    pki = _build_pki(d.get("pki"))
    return PkiforgeSettings(
        pki=pki,
        keys=_build_keys(d.get("keys")),
        ca=_build_ca(d.get("ca"), ocsp_url=pki.ocsp_url),
        authorities=_build_authorities(d.get("authorities")),
        crl=_build_crl(d.get("crl")),
        ocsp=_build_ocsp(d.get("ocsp")),
        logging=_build_logging(d.get("logging")),
    )
