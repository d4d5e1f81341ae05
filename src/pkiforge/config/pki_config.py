"""pkiforge configuration loader.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    PkiConfig(config_file="/etc/pkiforge/config.yaml")

    # 2. Any module retrieves it afterwards
    from pkiforge.config import get_config
    cfg = get_config()
    cfg.settings.keys.ca_key_size  # typed access

    # 3. Dynamic access
    cfg.get("pki.ocsp_url", default="http://localhost")
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from pkiforge.config.settings import PkiforgeSettings, build_settings
from pkiforge.core.errors import ConfigValidationError

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_MIN_RSA_KEY_SIZE = 2048
_MIN_EC_KEY_SIZE = 256
_CA_ONLY_PROFILES = ("v3_intermediate", "v3_cross")

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: PkiConfig | None = None


def get_config() -> PkiConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`PkiConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = "Configuration not initialised. PkiConfig must be created before calling get_config()."
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _read_file(config_file: Path) -> dict:
    """Parse a YAML or JSON config file into a dict."""
    try:
        with config_file.open(encoding="utf-8") as f:
            if config_file.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError:
        raise ConfigValidationError([f"Configuration file not found: {config_file}"]) from None
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigValidationError([f"Cannot parse {config_file}: {exc}"]) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError([f"{config_file} must contain a mapping at top level"])
    return data


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class PkiConfig:
    """Central configuration for the engine and its front-end.

    The JSON schema is bundled at ``config/schema.json``.  When
    *config_file* is ``None`` the built-in defaults are used.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data` /
    :pymeth:`get`.
    """

    def __init__(self, *, config_file: str | Path | None = None) -> None:
        global _instance  # noqa: PLW0603

        self._source = str(config_file) if config_file is not None else None
        self._data = self._load()
        self._validate_schema()
        self.additional_checks()
        self._settings: PkiforgeSettings = build_settings(self._data)
        _instance = self

    # -- lifecycle ----------------------------------------------------------

    def _load(self) -> dict:
        """Load config file then resolve ``${VAR}`` env-var references.

        Runs env-var resolution **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        if self._source is None:
            return {}
        data = _read_file(Path(self._source))
        _resolve_env_vars(data)
        return data

    def _validate_schema(self) -> None:
        schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
        validator = jsonschema.Draft202012Validator(schema)
        errors = [
            f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in sorted(validator.iter_errors(self._data), key=lambda e: list(e.path))
        ]
        if errors:
            raise ConfigValidationError(errors)

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> PkiforgeSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict:
        return self._data

    def get(self, path: str, default: Any = None) -> Any:  # noqa: ANN401
        """Return a raw value by dot-path, or *default* when absent."""
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901
        """Semantic & cross-field validation run after schema validation."""
        errors: list[str] = []
        settings = build_settings(self._data)

        keys = settings.keys
        if keys.min_ca_rsa_key_size < _MIN_RSA_KEY_SIZE:
            errors.append(
                f"keys.min_ca_rsa_key_size must be at least {_MIN_RSA_KEY_SIZE} "
                f"(got {keys.min_ca_rsa_key_size})",
            )
        if keys.min_end_entity_rsa_key_size < _MIN_RSA_KEY_SIZE:
            errors.append(
                f"keys.min_end_entity_rsa_key_size must be at least {_MIN_RSA_KEY_SIZE} "
                f"(got {keys.min_end_entity_rsa_key_size})",
            )
        if keys.min_ec_key_size < _MIN_EC_KEY_SIZE:
            errors.append(
                f"keys.min_ec_key_size must be at least {_MIN_EC_KEY_SIZE} "
                f"(got {keys.min_ec_key_size})",
            )

        ca = settings.ca
        for name in _CA_ONLY_PROFILES:
            profile = ca.profiles.get(name)
            if profile is not None and profile.ca is not True:
                errors.append(f"ca.profiles.{name} must be a CA profile (ca: true)")

        for pname, policy in ca.policies.items():
            for profile_name in (*policy.allowed_profiles, *policy.ca_profiles):
                if profile_name not in ca.profiles:
                    errors.append(
                        f"ca.policies.{pname} references unknown profile '{profile_name}'",
                    )

        for key, authority in settings.authorities.items():
            if authority.policy not in ca.policies:
                errors.append(
                    f"authorities.{key}.policy references unknown policy '{authority.policy}'",
                )
            if authority.profile not in ca.profiles:
                errors.append(
                    f"authorities.{key}.profile references unknown profile '{authority.profile}'",
                )

        pki = settings.pki
        for field_name in ("root_validity_days", "sub_validity_days", "final_validity_days"):
            if getattr(pki, field_name) <= 0:
                errors.append(f"pki.{field_name} must be positive")

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    def reload_settings(self) -> PkiforgeSettings:
        """Re-read the config file and rebuild settings.

        Does not reset the singleton.
        """
        if self._source is None:
            return build_settings({})
        data = _read_file(Path(self._source))
        _resolve_env_vars(data)
        return build_settings(data)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        return f"<PkiConfig config_file={self._source or 'defaults'}>"
