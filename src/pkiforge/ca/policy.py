"""Issuance policy engine.

Policies are data (:class:`~pkiforge.config.settings.PolicySettings`),
not code branches: a policy names subject-field rules, the extension
profiles a caller may select, the profiles allowed to grant CA:true,
and how unknown requested extensions are treated.  Adding a tier is a
configuration change.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pkiforge.core.errors import PolicyViolation
from pkiforge.models.extensions import ApprovedExtensionSet

if TYPE_CHECKING:
    from pkiforge.config.settings import CAProfileSettings, PolicySettings
    from pkiforge.models.request import SigningRequest
    from pkiforge.models.subject import Subject

log = logging.getLogger(__name__)

FIELD_MATCH = "match"
FIELD_SUPPLIED = "supplied"
FIELD_OPTIONAL = "optional"


class PolicyEngine:
    """Validate signing requests against named policies.

    Parameters
    ----------
    policies:
        Named policies (``strict``, ``loose`` ...).
    profiles:
        Named extension profiles the policies refer to.

    """

    def __init__(
        self,
        policies: dict[str, PolicySettings],
        profiles: dict[str, CAProfileSettings],
    ) -> None:
        self._policies = policies
        self._profiles = profiles

    @property
    def policy_names(self) -> tuple[str, ...]:
        return tuple(self._policies)

    def profile(self, name: str) -> CAProfileSettings:
        try:
            return self._profiles[name]
        except KeyError:
            msg = f"Unknown extension profile '{name}'"
            raise PolicyViolation(msg, field="profile") from None

    def validate(
        self,
        policy_name: str,
        request: SigningRequest,
        *,
        issuer_subject: Subject,
        profile_name: str,
        profile: CAProfileSettings | None = None,
    ) -> ApprovedExtensionSet:
        """Return the effective extension set for *request*.

        The result may narrow, but never widen, what was requested
        and what the profile allows.  *request* is not modified.
        *profile* overrides the named profile's settings (used for
        per-authority augmentations such as OCSP endpoints).

        Raises
        ------
        PolicyViolation
            When a subject rule fails, the profile is not allowed by
            the policy, or a forbidden extension is requested.

        """
        try:
            policy = self._policies[policy_name]
        except KeyError:
            msg = f"Unknown policy '{policy_name}'"
            raise PolicyViolation(msg, field="policy") from None

        if profile_name not in policy.allowed_profiles:
            msg = f"Profile '{profile_name}' is not allowed by policy '{policy_name}'"
            raise PolicyViolation(msg, field="profile")
        if profile is None:
            profile = self.profile(profile_name)

        self._check_subject(policy_name, policy, request.subject, issuer_subject)
        self._check_basic_constraints(policy_name, policy, profile_name, profile, request)
        self._check_unknown_extensions(policy_name, policy, request)

        requested = request.requested
        key_usages = _narrow(
            frozenset(profile.key_usages),
            requested.key_usages,
            "key_usage",
        )
        ekus = _narrow(
            frozenset(profile.extended_key_usages),
            requested.extended_key_usages,
            "extended_key_usage",
        )

        path_length = profile.path_length
        if profile.ca is True and requested.path_length is not None:
            path_length = (
                requested.path_length
                if path_length is None
                else min(path_length, requested.path_length)
            )
        elif profile.ca is not True:
            path_length = None

        return ApprovedExtensionSet(
            profile=profile_name,
            ca=profile.ca,
            basic_constraints_critical=profile.basic_constraints_critical,
            path_length=path_length,
            key_usages=key_usages,
            key_usage_critical=profile.key_usage_critical,
            extended_key_usages=ekus,
            extended_key_usage_critical=profile.extended_key_usage_critical,
            subject_key_identifier=profile.subject_key_identifier,
            authority_key_identifier=profile.authority_key_identifier,
            ocsp_url=profile.ocsp_url,
            crl_url=profile.crl_url,
            subject_alt_names=(
                requested.subject_alt_names if profile.copy_subject_alt_names else ()
            ),
        )

    # -- rules ----------------------------------------------------------------

    @staticmethod
    def _check_subject(
        policy_name: str,
        policy: PolicySettings,
        subject: Subject,
        issuer_subject: Subject,
    ) -> None:
        for field_name, rule in policy.fields.items():
            value = subject.get(field_name)
            if rule == FIELD_MATCH:
                expected = issuer_subject.get(field_name)
                if value != expected:
                    msg = (
                        f"Subject {field_name} '{value}' does not match issuer "
                        f"value '{expected}' required by policy '{policy_name}'"
                    )
                    raise PolicyViolation(msg, field=field_name)
            elif rule == FIELD_SUPPLIED and not value:
                msg = f"Subject {field_name} is required by policy '{policy_name}'"
                raise PolicyViolation(msg, field=field_name)

    @staticmethod
    def _check_basic_constraints(
        policy_name: str,
        policy: PolicySettings,
        profile_name: str,
        profile: CAProfileSettings,
        request: SigningRequest,
    ) -> None:
        if request.requested.ca is True and profile.ca is not True:
            msg = f"CA:true requested under non-CA profile '{profile_name}'"
            raise PolicyViolation(msg, field="basic_constraints")
        if profile.ca is True and profile_name not in policy.ca_profiles:
            msg = f"Policy '{policy_name}' does not allow CA issuance with profile '{profile_name}'"
            raise PolicyViolation(msg, field="basic_constraints")

    @staticmethod
    def _check_unknown_extensions(
        policy_name: str,
        policy: PolicySettings,
        request: SigningRequest,
    ) -> None:
        unknown = [
            oid
            for oid in request.requested.other_oids
            if oid not in policy.allowed_extension_oids
        ]
        if not unknown:
            return
        if policy.unknown_extensions == "reject":
            msg = f"Extensions {unknown} are not permitted by policy '{policy_name}'"
            raise PolicyViolation(msg, field="extensions")
        log.info("Dropping requested extensions %s under policy '%s'", unknown, policy_name)


def _narrow(
    allowed: frozenset[str],
    requested: frozenset[str] | None,
    field_name: str,
) -> frozenset[str]:
    """Intersect *requested* with *allowed*; ``None`` keeps *allowed*."""
    if requested is None:
        return allowed
    effective = allowed & requested
    if allowed and not effective:
        msg = f"None of the requested {field_name} values {sorted(requested)} are permitted"
        raise PolicyViolation(msg, field=field_name)
    return effective
