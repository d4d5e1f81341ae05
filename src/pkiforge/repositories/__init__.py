"""Per-authority persisted state: serial counters and the issuance ledger."""

from pkiforge.repositories.ledger import IssuanceLedger
from pkiforge.repositories.serial import SerialAllocator

__all__ = ["IssuanceLedger", "SerialAllocator"]
