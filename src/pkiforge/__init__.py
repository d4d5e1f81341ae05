"""pkiforge -- certificate authority issuance and revocation engine."""

__version__ = "0.1.0"
