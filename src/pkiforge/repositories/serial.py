"""Serial number allocator.

One allocator per authority.  The persisted file holds the *next*
serial to hand out, as OpenSSL's ``serial`` file does.  The counter is
advanced and fsynced before the allocated value is returned, so a
crash after allocation burns the serial rather than reusing it.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from pkiforge.core.errors import EngineError
from pkiforge.core.serials import format_serial, parse_serial

log = logging.getLogger(__name__)


class SerialAllocator:
    """Monotonic, durably persisted serial source.

    Parameters
    ----------
    path:
        Counter file.  ``None`` keeps the counter in memory only.
    start:
        First serial when the file does not exist yet.
    authority:
        Owning authority, named in load errors.

    """

    def __init__(
        self,
        path: str | Path | None = None,
        start: int = 1,
        *,
        authority: str | None = None,
    ) -> None:
        if start < 1:
            msg = "Serial numbers must be positive"
            raise ValueError(msg)
        self._path = Path(path) if path is not None else None
        self._authority = authority
        self._lock = threading.Lock()
        self._next = self._load(start)

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self, start: int) -> int:
        if self._path is None or not self._path.exists():
            return start
        try:
            text = self._path.read_text(encoding="ascii").strip()
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Cannot read serial file {self._path}: {exc}"
            raise EngineError(msg, operation="load", authority=self._authority, field=str(self._path)) from exc
        if not text:
            return start
        try:
            value = parse_serial(text)
        except ValueError as exc:
            msg = f"Corrupt serial file {self._path}: {text!r}"
            raise EngineError(msg, operation="load", authority=self._authority, field=str(self._path)) from exc
        if value < 1:
            msg = f"Serial file {self._path} holds a non-positive serial {text!r}"
            raise EngineError(msg, operation="load", authority=self._authority, field=str(self._path))
        return value

    def _persist(self, value: int) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        with tmp.open("w", encoding="ascii") as f:
            f.write(format_serial(value) + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self._path)
        _fsync_directory(self._path.parent)

    def peek(self) -> int:
        """Return the serial the next :meth:`next` call will allocate."""
        with self._lock:
            return self._next

    def next(self) -> int:
        """Allocate and durably commit the next serial."""
        with self._lock:
            serial = self._next
            self._persist(serial + 1)
            self._next = serial + 1
        log.debug("Allocated serial %s", format_serial(serial))
        return serial

    def initialize(self) -> None:
        """Write the counter file if it does not exist yet."""
        with self._lock:
            if self._path is not None and not self._path.exists():
                self._persist(self._next)

    def __repr__(self) -> str:
        return f"<SerialAllocator path={self._path} next={format_serial(self._next)}>"


def _fsync_directory(directory: Path) -> None:
    """Flush a rename to stable storage where the platform allows it."""
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
