"""Enumerated types shared across the engine.

String enums inherit from :class:`enum.StrEnum` so their ``.value``
round-trips through the JSON-lines ledger unchanged.
:class:`RevocationReason` inherits from :class:`enum.IntEnum` per
RFC 5280 §5.3.1 integer codes.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum

# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class LedgerStatus(StrEnum):
    VALID = "valid"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Authority lifecycle
# ---------------------------------------------------------------------------


class AuthorityKind(StrEnum):
    ROOT = "root"
    SUBORDINATE = "subordinate"


class AuthorityState(StrEnum):
    UNINITIALIZED = "uninitialized"
    AWAITING_PARENT_SIGNATURE = "awaiting-parent-signature"
    ACTIVE = "active"


# ---------------------------------------------------------------------------
# OCSP
# ---------------------------------------------------------------------------


class CertStatus(StrEnum):
    GOOD = "good"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class KeyAlgorithm(StrEnum):
    RSA = "rsa"
    EC = "ec"


class KeyPurpose(StrEnum):
    CA = "ca"
    END_ENTITY = "end_entity"


# ---------------------------------------------------------------------------
# Revocation reasons, RFC 5280 §5.3.1
# ---------------------------------------------------------------------------


class RevocationReason(IntEnum):
    UNSPECIFIED = 0
    KEY_COMPROMISE = 1
    CA_COMPROMISE = 2
    AFFILIATION_CHANGED = 3
    SUPERSEDED = 4
    CESSATION_OF_OPERATION = 5
    CERTIFICATE_HOLD = 6
    # 7 is unused
    REMOVE_FROM_CRL = 8
    PRIVILEGE_WITHDRAWN = 9
    AA_COMPROMISE = 10

    @classmethod
    def parse(cls, value: str | int | RevocationReason | None) -> RevocationReason:
        """Accept an enum, an integer code, or a name such as ``keyCompromise``."""
        if value is None:
            return cls.UNSPECIFIED
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        normalised = value.replace("-", "").replace("_", "").lower()
        for member in cls:
            if member.name.replace("_", "").lower() == normalised:
                return member
        if value.isdigit():
            return cls(int(value))
        msg = f"Unknown revocation reason '{value}'"
        raise ValueError(msg)
