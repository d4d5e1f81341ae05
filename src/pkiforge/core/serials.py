"""Serial number text format.

Serials are rendered the way OpenSSL writes its ``serial`` file and
index: uppercase hexadecimal padded to an even number of digits
(``01``, ``0A``, ``01F4``).
"""

from __future__ import annotations

_HEX_BASE = 16


def format_serial(serial: int) -> str:
    """Render *serial* as even-length uppercase hex."""
    text = format(serial, "X")
    if len(text) % 2:
        text = "0" + text
    return text


def parse_serial(text: str | int) -> int:
    """Parse a hex serial (``01``, ``0x1f``, ``1F:4A``) into an integer."""
    if isinstance(text, int):
        return text
    cleaned = text.strip().replace(":", "")
    cleaned = cleaned.removeprefix("0x").removeprefix("0X")
    if not cleaned:
        msg = "Empty serial number"
        raise ValueError(msg)
    return int(cleaned, _HEX_BASE)
