"""Extension set granted by policy."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography import x509


@dataclass(frozen=True)
class ApprovedExtensionSet:
    """Effective extensions to sign, as returned by the policy engine.

    Never wider than the profile allows nor than the requester asked
    for.  ``ca=None`` omits basicConstraints.
    """

    profile: str
    ca: bool | None
    basic_constraints_critical: bool
    path_length: int | None
    key_usages: frozenset[str]
    key_usage_critical: bool
    extended_key_usages: frozenset[str]
    extended_key_usage_critical: bool
    subject_key_identifier: bool
    authority_key_identifier: bool
    ocsp_url: str | None = None
    crl_url: str | None = None
    subject_alt_names: tuple[x509.GeneralName, ...] = ()

    @property
    def is_ca(self) -> bool:
        return self.ca is True
