"""Engine data model."""

from pkiforge.models.certificate import IssuedCertificate
from pkiforge.models.extensions import ApprovedExtensionSet
from pkiforge.models.key_pair import KeyPair
from pkiforge.models.ledger import LedgerEntry
from pkiforge.models.request import RequestedExtensions, SigningRequest
from pkiforge.models.revocation import OCSPStatus, RevocationList, RevokedEntry
from pkiforge.models.subject import Subject

__all__ = [
    "ApprovedExtensionSet",
    "IssuedCertificate",
    "KeyPair",
    "LedgerEntry",
    "OCSPStatus",
    "RequestedExtensions",
    "RevocationList",
    "RevokedEntry",
    "SigningRequest",
    "Subject",
]
