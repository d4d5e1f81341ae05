"""Distinguished-name subject."""

from __future__ import annotations

from dataclasses import dataclass, fields

from cryptography import x509
from cryptography.x509.oid import NameOID

# Attribute order used when building an X.509 Name
_FIELD_OIDS: dict[str, x509.ObjectIdentifier] = {
    "country": NameOID.COUNTRY_NAME,
    "state": NameOID.STATE_OR_PROVINCE_NAME,
    "locality": NameOID.LOCALITY_NAME,
    "organization": NameOID.ORGANIZATION_NAME,
    "common_name": NameOID.COMMON_NAME,
    "email": NameOID.EMAIL_ADDRESS,
}

# Short names accepted by :meth:`Subject.parse` (OpenSSL ``-subj`` syntax)
_SHORT_NAMES: dict[str, str] = {
    "C": "country",
    "ST": "state",
    "L": "locality",
    "O": "organization",
    "CN": "common_name",
    "emailAddress": "email",
}


@dataclass(frozen=True)
class Subject:
    """Ordered set of distinguished-name attributes.

    Immutable once attached to a request.  Absent attributes are
    ``None`` and are left out of the encoded name.
    """

    country: str | None = None
    state: str | None = None
    locality: str | None = None
    organization: str | None = None
    common_name: str | None = None
    email: str | None = None

    def get(self, field_name: str) -> str | None:
        if field_name not in _FIELD_OIDS:
            msg = f"Unknown subject attribute '{field_name}'"
            raise KeyError(msg)
        return getattr(self, field_name)

    def to_x509_name(self) -> x509.Name:
        return x509.Name(
            [
                x509.NameAttribute(oid, value)
                for name, oid in _FIELD_OIDS.items()
                if (value := getattr(self, name))
            ],
        )

    @classmethod
    def from_x509_name(cls, name: x509.Name) -> Subject:
        values: dict[str, str] = {}
        for field_name, oid in _FIELD_OIDS.items():
            attrs = name.get_attributes_for_oid(oid)
            if attrs:
                values[field_name] = str(attrs[0].value)
        return cls(**values)

    @classmethod
    def parse(cls, text: str) -> Subject:
        """Parse ``/C=FR/ST=.../CN=name`` into a subject."""
        values: dict[str, str] = {}
        for part in text.strip().strip("/").split("/"):
            if not part:
                continue
            key, sep, value = part.partition("=")
            if not sep or key not in _SHORT_NAMES:
                msg = f"Invalid subject component '{part}'"
                raise ValueError(msg)
            values[_SHORT_NAMES[key]] = value
        return cls(**values)

    def __str__(self) -> str:
        return self.to_x509_name().rfc4514_string()


SUBJECT_FIELDS = tuple(f.name for f in fields(Subject))
