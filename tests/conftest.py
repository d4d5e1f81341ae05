"""Root conftest for the pkiforge test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from pkiforge.config.settings import PkiforgeSettings, build_settings  # noqa: E402

# ---------------------------------------------------------------------------
# Config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def ec_config_data(tmp_path: Path) -> dict:
    """Config using P-256 keys so tests do not wait on RSA generation."""
    return {
        "pki": {"workdir": str(tmp_path / "pki_env")},
        "keys": {
            "algorithm": "ec",
            "ca_key_size": 256,
            "end_entity_key_size": 256,
        },
    }


@pytest.fixture()
def ec_settings(ec_config_data: dict) -> PkiforgeSettings:
    return build_settings(ec_config_data)


@pytest.fixture()
def tmp_config_file(tmp_path: Path, ec_config_data: dict) -> Path:
    """Write *ec_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(ec_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Config singleton cleanup -- autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the PkiConfig singleton before and after every test."""
    from pkiforge.config.pki_config import PkiConfig

    PkiConfig.reset()
    yield
    PkiConfig.reset()


# ---------------------------------------------------------------------------
# In-memory two-tier hierarchy
# ---------------------------------------------------------------------------

BASE_SUBJECT_FIELDS = {
    "country": "FR",
    "state": "Île-de-France",
    "locality": "Paris",
    "organization": "td1-sup-de-vinci",
    "common_name": "AB_FM.sup-de-vinci.local",
}


def make_authority(settings: PkiforgeSettings, key: str, policy_engine, **kwargs):
    """Authority with in-memory serials and ledger."""
    from pkiforge.ca.authority import CertificateAuthority
    from pkiforge.repositories import IssuanceLedger, SerialAllocator

    auth = settings.authorities[key]
    serials = kwargs.pop("serials", None)
    ledger = kwargs.pop("ledger", None)
    return CertificateAuthority(
        auth.name,
        auth.kind,
        policy=auth.policy,
        profile=auth.profile,
        ca_settings=kwargs.pop("ca_settings", settings.ca),
        policy_engine=policy_engine,
        serials=serials if serials is not None else SerialAllocator(),
        ledger=ledger if ledger is not None else IssuanceLedger(),
        **kwargs,
    )


@pytest.fixture()
def base_subject():
    from pkiforge.models.subject import Subject

    return Subject(**BASE_SUBJECT_FIELDS)


@pytest.fixture()
def keys(ec_settings: PkiforgeSettings):
    from pkiforge.ca.keys import KeyMaterialProvider

    return KeyMaterialProvider(ec_settings.keys)


@pytest.fixture()
def policy_engine(ec_settings: PkiforgeSettings):
    from pkiforge.ca.policy import PolicyEngine

    return PolicyEngine(ec_settings.ca.policies, ec_settings.ca.profiles)


@pytest.fixture()
def root_ca(ec_settings, keys, policy_engine, base_subject):
    """Active root (path length 2, 5475 days)."""
    root = make_authority(ec_settings, "root", policy_engine)
    root.issue_self_signed(base_subject, 5475, key_pair=keys.generate("ec", 256, "ca"))
    return root


@pytest.fixture()
def sub_ca(ec_settings, keys, policy_engine, base_subject, root_ca):
    """Active subordinate signed by *root_ca* (path length 0, 3650 days)."""
    sub = make_authority(ec_settings, "sub", policy_engine)
    request = sub.create_signing_request(base_subject, key_pair=keys.generate("ec", 256, "ca"))
    issued = root_ca.issue(request, "v3_intermediate", 3650)
    sub.install_certificate(issued.certificate, (root_ca.certificate,))
    return sub


@pytest.fixture()
def make_request(keys):
    """Factory building a self-signed CSR wrapped as a SigningRequest."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes

    from pkiforge.models.request import SigningRequest
    from pkiforge.models.subject import Subject

    def _make(common_name: str = "www.example.local", *, extensions=(), key_pair=None, **fields):
        key_pair = key_pair or keys.generate("ec", 256)
        subject = Subject(common_name=common_name, **fields)
        builder = x509.CertificateSigningRequestBuilder().subject_name(subject.to_x509_name())
        for ext, critical in extensions:
            builder = builder.add_extension(ext, critical=critical)
        csr = builder.sign(key_pair.private_key, hashes.SHA256())
        return SigningRequest.from_csr(csr)

    return _make


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo handler changes made by configure_logging so caplog keeps working."""
    import logging

    yield
    for name in ("pkiforge", "pkiforge.audit"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
        logger.disabled = False
        logger.setLevel(logging.NOTSET)
