"""Asymmetric key pair with a releasable private half."""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

from cryptography.hazmat.primitives import serialization

from pkiforge.core.errors import SigningError

if TYPE_CHECKING:
    from types import TracebackType

    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
        CertificatePublicKeyTypes,
    )

    from pkiforge.core.types import KeyAlgorithm


class KeyPair:
    """Public key, private key material, and algorithm/size metadata.

    The private half belongs to whoever generated it.  Use the pair as
    a context manager (or call :meth:`release`) when the private key
    must not outlive a signing operation; afterwards any access to
    :attr:`private_key` raises :class:`SigningError`.
    """

    def __init__(
        self,
        private_key: CertificateIssuerPrivateKeyTypes,
        algorithm: KeyAlgorithm,
        key_size: int,
    ) -> None:
        self._private_key: CertificateIssuerPrivateKeyTypes | None = private_key
        self.public_key: CertificatePublicKeyTypes = private_key.public_key()
        self.algorithm = algorithm
        self.key_size = key_size

    @property
    def private_key(self) -> CertificateIssuerPrivateKeyTypes:
        if self._private_key is None:
            msg = "Private key material has been released"
            raise SigningError(msg)
        return self._private_key

    @property
    def released(self) -> bool:
        return self._private_key is None

    def release(self) -> None:
        """Drop the reference to the private key."""
        self._private_key = None

    def private_pem(self, password: bytes | None = None) -> bytes:
        encryption: serialization.KeySerializationEncryption
        if password:
            encryption = serialization.BestAvailableEncryption(password)
        else:
            encryption = serialization.NoEncryption()
        return self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            encryption,
        )

    def public_pem(self) -> bytes:
        return self.public_key.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "loaded"
        return f"<KeyPair {self.algorithm}-{self.key_size} {state}>"
