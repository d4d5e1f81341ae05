"""Sensitive data sanitization for log output.

Provides :func:`sanitize_for_logs` which redacts key material and
secrets (PEM bodies, passwords) from data structures before they are
written to log files.  Only metadata (subject, serial, key type) is
preserved.
"""

from __future__ import annotations

import re
from typing import Any

# Mapping keys whose values are never logged
_SECRET_FIELDS = frozenset({"password", "passphrase", "private_key", "pin"})

# Regex matching the base64 body inside PEM blocks
_PEM_BODY_RE = re.compile(
    r"(-----BEGIN [A-Z0-9 ]+-----)"
    r"([\s\S]*?)"
    r"(-----END [A-Z0-9 ]+-----)",
)


def sanitize_pem(pem: str) -> str:
    """Replace the base64 body of PEM blocks with ``[REDACTED]``.

    Preserves BEGIN/END markers so the type of object is still visible.
    """

    def _redact(m: re.Match[str]) -> str:
        return f"{m.group(1)}\n[REDACTED]\n{m.group(3)}"

    return _PEM_BODY_RE.sub(_redact, pem)


def sanitize_for_logs(data: Any) -> Any:  # noqa: ANN401
    """Recursively sanitize sensitive material in *data*.

    Handles dicts (secret-named keys, PEM strings in values), lists,
    tuples, bytes and plain strings.  Non-sensitive data passes
    through unchanged.
    """
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in _SECRET_FIELDS else sanitize_for_logs(v)
            for k, v in data.items()
        }

    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)

    if isinstance(data, bytes):
        return f"<{len(data)} bytes>"

    if isinstance(data, str):
        if "-----BEGIN " in data:
            return sanitize_pem(data)
        return data

    return data
