"""Configuration subsystem for pkiforge.

Public API::

    from pkiforge.config import get_config, PkiConfig

    # At startup (CLI only):
    PkiConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    days = cfg.settings.pki.final_validity_days   # typed access
    url = cfg.get("pki.ocsp_url")                 # dynamic dot-path
"""

from pkiforge.config.pki_config import PkiConfig, get_config
from pkiforge.config.settings import (
    AuditLogSettings,
    AuthoritySettings,
    CAProfileSettings,
    CASettings,
    CrlSettings,
    KeySettings,
    LoggingSettings,
    OcspSettings,
    PkiforgeSettings,
    PkiSettings,
    PolicySettings,
    SubjectSettings,
    build_settings,
)
from pkiforge.core.errors import ConfigValidationError

__all__ = [
    "AuditLogSettings",
    "AuthoritySettings",
    "CAProfileSettings",
    "CASettings",
    "ConfigValidationError",
    "CrlSettings",
    "KeySettings",
    "LoggingSettings",
    "OcspSettings",
    "PkiConfig",
    "PkiSettings",
    "PkiforgeSettings",
    "PolicySettings",
    "SubjectSettings",
    "build_settings",
    "get_config",
]
