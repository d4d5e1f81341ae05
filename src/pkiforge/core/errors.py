"""Engine error taxonomy.

Every failure surfaced by the engine is an :class:`EngineError`
subclass so the front-end can map the *kind* to an exit code and a
user message.  Each error carries the operation, the authority, and
the offending field or serial where one applies.

Rejected requests (policy, validity, path length) are recoverable:
the caller corrects the request and resubmits.  Errors marked
``fatal`` mean the authority instance needs operator attention.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    operation:
        Engine operation that failed (``issue``, ``revoke`` ...).
    authority:
        Name of the authority the operation ran against.
    field:
        Offending request field or serial number.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    fatal = False

    def __init__(
        self,
        detail: str,
        *,
        operation: str | None = None,
        authority: str | None = None,
        field: str | None = None,
        retryable: bool = False,
    ) -> None:
        self.detail = detail
        self.operation = operation
        self.authority = authority
        self.field = field
        self.retryable = retryable
        super().__init__(detail)

    @property
    def kind(self) -> str:
        """Stable error kind name used by the front-end."""
        return type(self).__name__

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.authority:
            context.append(f"authority={self.authority}")
        if self.field:
            context.append(f"field={self.field}")
        if not context:
            return self.detail
        return f"{self.detail} ({', '.join(context)})"


class KeyGenerationError(EngineError):
    """Requested key is weaker than the configured minimum."""


class PolicyViolation(EngineError):  # noqa: N818
    """Signing request does not satisfy the named policy."""

    @property
    def reason(self) -> str:
        return self.detail


class PathLengthExceededError(EngineError):
    """CA issuance would break the decrementing path-length constraint."""


class ValidityWindowError(EngineError):
    """Requested validity ends after the issuer's own certificate."""


class DuplicateSerialError(EngineError):
    """Serial allocator and ledger are out of step."""

    fatal = True


class NotFoundError(EngineError):
    """No ledger entry exists for the serial."""


class AlreadyRevokedError(EngineError):
    """The ledger entry is already revoked."""


class AlreadySignedError(EngineError):
    """The authority already holds its own certificate."""


class AuthorityStateError(EngineError):
    """Operation is not valid in the authority's current lifecycle state."""


class IssuanceCancelledError(EngineError):
    """Issuance was aborted by the caller before the serial was committed."""


class SigningError(EngineError):
    """Cryptographic signing failed after the retry budget was spent."""

    fatal = True


class ConfigValidationError(EngineError):
    """Raised when configuration validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")
