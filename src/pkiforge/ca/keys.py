"""Key material provider.

Generates RSA or EC key pairs for authorities and end entities,
enforcing the configured minimum sizes, and persists private keys
PEM-encoded with owner-read-only permissions.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from pkiforge.core.errors import KeyGenerationError
from pkiforge.core.types import KeyAlgorithm, KeyPurpose
from pkiforge.models.key_pair import KeyPair

if TYPE_CHECKING:
    from pkiforge.config.settings import KeySettings

log = logging.getLogger(__name__)

_RSA_PUBLIC_EXPONENT = 65537

_EC_CURVES: dict[int, type[ec.EllipticCurve]] = {
    256: ec.SECP256R1,
    384: ec.SECP384R1,
    521: ec.SECP521R1,
}

_PRIVATE_KEY_MODE = 0o400


class KeyMaterialProvider:
    """Generate and persist asymmetric key pairs.

    Parameters
    ----------
    settings:
        The ``keys`` configuration section (minimum sizes).

    """

    def __init__(self, settings: KeySettings) -> None:
        self._settings = settings

    def minimum_size(self, algorithm: KeyAlgorithm, purpose: KeyPurpose) -> int:
        if algorithm == KeyAlgorithm.EC:
            return self._settings.min_ec_key_size
        if purpose == KeyPurpose.CA:
            return self._settings.min_ca_rsa_key_size
        return self._settings.min_end_entity_rsa_key_size

    def default_size(self, algorithm: KeyAlgorithm, purpose: KeyPurpose) -> int:
        if algorithm == KeyAlgorithm.EC:
            return max(self._settings.min_ec_key_size, 256)
        if purpose == KeyPurpose.CA:
            return self._settings.ca_key_size
        return self._settings.end_entity_key_size

    def generate(
        self,
        algorithm: KeyAlgorithm | str,
        key_size: int | None = None,
        purpose: KeyPurpose | str = KeyPurpose.END_ENTITY,
    ) -> KeyPair:
        """Generate a fresh key pair.

        Raises
        ------
        KeyGenerationError
            If *key_size* is below the configured minimum for
            *purpose*, or the algorithm/size is not supported.

        """
        try:
            algorithm = KeyAlgorithm(algorithm)
        except ValueError:
            msg = f"Unsupported key algorithm '{algorithm}'"
            raise KeyGenerationError(msg, operation="generate", field="algorithm") from None
        purpose = KeyPurpose(purpose)
        if key_size is None:
            key_size = self.default_size(algorithm, purpose)

        minimum = self.minimum_size(algorithm, purpose)
        if key_size < minimum:
            msg = (
                f"{algorithm.upper()} key size {key_size} is below the "
                f"minimum of {minimum} for {purpose} keys"
            )
            raise KeyGenerationError(msg, operation="generate", field="key_size")

        if algorithm == KeyAlgorithm.RSA:
            private_key = rsa.generate_private_key(
                public_exponent=_RSA_PUBLIC_EXPONENT,
                key_size=key_size,
            )
        else:
            curve = _EC_CURVES.get(key_size)
            if curve is None:
                msg = f"Unsupported EC key size {key_size}; supported: {sorted(_EC_CURVES)}"
                raise KeyGenerationError(msg, operation="generate", field="key_size")
            private_key = ec.generate_private_key(curve())

        log.debug("Generated %s-%d key for %s", algorithm, key_size, purpose)
        return KeyPair(private_key, algorithm, key_size)


def key_pair_from_private_key(private_key: object) -> KeyPair:
    """Wrap an already loaded private key."""
    if isinstance(private_key, rsa.RSAPrivateKey):
        return KeyPair(private_key, KeyAlgorithm.RSA, private_key.key_size)
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return KeyPair(private_key, KeyAlgorithm.EC, private_key.curve.key_size)
    msg = f"Unsupported private key type {type(private_key).__name__}"
    raise KeyGenerationError(msg, operation="load")


def write_private_key(key_pair: KeyPair, path: str | Path, password: bytes | None = None) -> Path:
    """Write the private key PEM to *path* with mode ``0400``.

    An existing file is replaced.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.chmod(0o600)
        path.unlink()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _PRIVATE_KEY_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(key_pair.private_pem(password))
    log.info("Private key written to %s", path)
    return path


def load_private_key(path: str | Path, password: bytes | None = None) -> KeyPair:
    """Load a PEM private key from *path*.

    Raises
    ------
    KeyGenerationError
        If the file is missing or cannot be parsed.

    """
    path = Path(path)
    try:
        private_key = serialization.load_pem_private_key(path.read_bytes(), password=password)
    except FileNotFoundError:
        msg = f"Private key not found: {path}"
        raise KeyGenerationError(msg, operation="load") from None
    except (ValueError, TypeError) as exc:
        msg = f"Failed to load private key from {path}: {exc}"
        raise KeyGenerationError(msg, operation="load") from exc
    check_key_permissions(path)
    return key_pair_from_private_key(private_key)


def check_key_permissions(key_path: str | Path) -> bool:
    """Warn if the private key file is group or world accessible.

    Returns ``True`` when the permissions are acceptable.
    """
    try:
        mode = os.stat(key_path).st_mode
    except OSError:
        return True
    if mode & (stat.S_IRGRP | stat.S_IROTH | stat.S_IWGRP | stat.S_IWOTH):
        log.warning(
            "Private key file '%s' has overly permissive permissions (mode=%o). Recommend chmod 400.",
            key_path,
            stat.S_IMODE(mode),
        )
        return False
    return True
