"""Issuance ledger.

Append-only JSON-lines log of every certificate an authority has
issued.  Two event kinds are written: ``issue`` (one per certificate,
carrying its PEM) and ``revoke``.  The in-memory index is rebuilt by
replaying the file on open; the file itself is never rewritten.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pkiforge.core.errors import (
    AlreadyRevokedError,
    DuplicateSerialError,
    EngineError,
    NotFoundError,
)
from pkiforge.core.serials import format_serial, parse_serial
from pkiforge.core.types import LedgerStatus, RevocationReason
from pkiforge.models.ledger import LedgerEntry

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)

EVENT_ISSUE = "issue"
EVENT_REVOKE = "revoke"


class IssuanceLedger:
    """Per-authority record of issued certificates, keyed by serial.

    Writers are serialised by an internal lock.  Readers take a
    snapshot under the same lock and iterate it lazily, so they never
    see a half-written entry.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._entries: dict[int, LedgerEntry] = {}
        self._requests: dict[str, int] = {}
        if self._path is not None and self._path.exists():
            self._replay()

    @property
    def path(self) -> Path | None:
        return self._path

    # -- mapping ----------------------------------------------------------

    @staticmethod
    def _entity_to_record(entity: LedgerEntry) -> dict[str, Any]:
        return {
            "event": EVENT_ISSUE,
            "serial": entity.serial_hex,
            "subject": entity.subject,
            "issued_at": entity.issued_at.isoformat(),
            "expires_at": entity.expires_at.isoformat(),
            "profile": entity.profile,
            "fingerprint": entity.fingerprint,
            "certificate": entity.certificate_pem,
            "request": entity.request_id,
        }

    @staticmethod
    def _record_to_entity(record: dict[str, Any]) -> LedgerEntry:
        return LedgerEntry(
            serial_number=parse_serial(record["serial"]),
            subject=record["subject"],
            status=LedgerStatus.VALID,
            issued_at=datetime.fromisoformat(record["issued_at"]),
            expires_at=datetime.fromisoformat(record["expires_at"]),
            profile=record.get("profile", ""),
            fingerprint=record.get("fingerprint", ""),
            certificate_pem=record.get("certificate", ""),
            request_id=record.get("request", ""),
        )

    # -- persistence -----------------------------------------------------

    def _replay(self) -> None:
        if self._path is None:
            return
        lines = self._path.read_bytes().splitlines(keepends=True)
        offset = 0
        for lineno, raw in enumerate(lines, start=1):
            start = offset
            offset += len(raw)
            if not raw.strip():
                continue
            try:
                record = json.loads(raw)
            except ValueError as exc:
                if lineno == len(lines):
                    log.warning(
                        "Dropping truncated trailing ledger record in %s (line %d)",
                        self._path,
                        lineno,
                    )
                    self._truncate(start)
                    break
                msg = f"Corrupt ledger record in {self._path} at line {lineno}: {exc}"
                raise EngineError(msg, operation="load") from exc
            self._apply(record, lineno)
            if lineno == len(lines) and not raw.endswith(b"\n"):
                # Complete record that lost its terminator
                with self._path.open("ab") as f:
                    f.write(b"\n")
                    f.flush()
                    os.fsync(f.fileno())
        log.debug("Replayed %d ledger entries from %s", len(self._entries), self._path)

    def _apply(self, record: dict[str, Any], lineno: int) -> None:
        event = record.get("event")
        serial = parse_serial(record["serial"])
        if event == EVENT_ISSUE:
            if serial in self._entries:
                msg = f"Ledger {self._path} records serial {format_serial(serial)} twice"
                raise DuplicateSerialError(msg, operation="load", field=format_serial(serial))
            self._index(self._record_to_entity(record))
        elif event == EVENT_REVOKE:
            entry = self._entries.get(serial)
            if entry is None:
                msg = f"Revocation of unknown serial {format_serial(serial)} at line {lineno}"
                raise EngineError(msg, operation="load", field=format_serial(serial))
            if not entry.is_revoked:
                self._entries[serial] = entry.revoked(
                    RevocationReason(record.get("reason", 0)),
                    datetime.fromisoformat(record["revoked_at"]),
                )
        else:
            msg = f"Unknown ledger event '{event}' at line {lineno}"
            raise EngineError(msg, operation="load")

    def _index(self, entry: LedgerEntry) -> None:
        self._entries[entry.serial_number] = entry
        if entry.request_id:
            self._requests[entry.request_id] = entry.serial_number

    def _append(self, record: dict[str, Any]) -> None:
        """Append one record; on failure the file is cut back to its prior size."""
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = (json.dumps(record, sort_keys=True) + "\n").encode("utf-8")
        size = self._path.stat().st_size if self._path.exists() else 0
        try:
            with self._path.open("ab") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError:
            try:
                self._truncate(size)
            except OSError as exc:
                log.error("Could not roll back ledger %s to %d bytes: %s", self._path, size, exc)
            raise

    def _truncate(self, size: int) -> None:
        if self._path is None:
            return
        with self._path.open("r+b") as f:
            f.truncate(size)
            f.flush()
            os.fsync(f.fileno())

    def initialize(self) -> None:
        """Create an empty ledger file if none exists."""
        if self._path is not None and not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.touch()

    # -- writes ------------------------------------------------------------

    def record(self, entry: LedgerEntry) -> None:
        """Insert *entry*.

        Raises
        ------
        DuplicateSerialError
            If the serial is already recorded.

        """
        with self._lock:
            if entry.serial_number in self._entries:
                msg = f"Serial {entry.serial_hex} is already recorded"
                raise DuplicateSerialError(msg, operation="record", field=entry.serial_hex)
            self._append(self._entity_to_record(entry))
            self._index(entry)

    def mark_revoked(
        self,
        serial: int,
        reason: RevocationReason = RevocationReason.UNSPECIFIED,
        timestamp: datetime | None = None,
    ) -> LedgerEntry:
        """Transition the entry for *serial* to ``revoked``.

        Raises
        ------
        NotFoundError
            If no entry exists for *serial*.
        AlreadyRevokedError
            If the entry is already revoked; the original
            ``revoked_at`` is left untouched.

        """
        serial_hex = format_serial(serial)
        with self._lock:
            entry = self._entries.get(serial)
            if entry is None:
                msg = f"No certificate with serial {serial_hex}"
                raise NotFoundError(msg, operation="revoke", field=serial_hex)
            if entry.is_revoked:
                msg = f"Certificate {serial_hex} was already revoked at {entry.revoked_at}"
                raise AlreadyRevokedError(msg, operation="revoke", field=serial_hex)
            revoked = entry.revoked(reason, timestamp or datetime.now(UTC))
            self._append(
                {
                    "event": EVENT_REVOKE,
                    "serial": serial_hex,
                    "revoked_at": revoked.revoked_at.isoformat(),  # type: ignore[union-attr]
                    "reason": int(reason),
                },
            )
            self._entries[serial] = revoked
        return revoked

    # -- reads -------------------------------------------------------------

    def _snapshot(self) -> list[LedgerEntry]:
        with self._lock:
            return list(self._entries.values())

    def get(self, serial: int) -> LedgerEntry | None:
        with self._lock:
            return self._entries.get(serial)

    def find_by_request(self, request_id: str) -> LedgerEntry | None:
        """Entry issued for the signing request *request_id*, if any."""
        with self._lock:
            serial = self._requests.get(request_id)
            return None if serial is None else self._entries[serial]

    def all_entries(self) -> Iterator[LedgerEntry]:
        yield from self._snapshot()

    def all_valid(self, as_of: datetime | None = None) -> Iterator[LedgerEntry]:
        """Yield unrevoked entries, optionally only those in their validity window at *as_of*."""
        for entry in self._snapshot():
            if entry.is_revoked:
                continue
            if as_of is not None and not (entry.issued_at <= as_of < entry.expires_at):
                continue
            yield entry

    def all_revoked(self) -> Iterator[LedgerEntry]:
        """Yield revoked entries in issuance order."""
        for entry in self._snapshot():
            if entry.is_revoked:
                yield entry

    def __contains__(self, serial: object) -> bool:
        with self._lock:
            return serial in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
