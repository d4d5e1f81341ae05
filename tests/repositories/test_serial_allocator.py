"""Tests for pkiforge.repositories.serial.SerialAllocator."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from pkiforge.core.errors import EngineError
from pkiforge.repositories.serial import SerialAllocator


class TestInMemory:
    def test_starts_at_one(self):
        allocator = SerialAllocator()
        assert allocator.peek() == 1
        assert allocator.next() == 1
        assert allocator.next() == 2
        assert allocator.peek() == 3

    def test_custom_start(self):
        assert SerialAllocator(start=0x10).next() == 0x10

    def test_start_must_be_positive(self):
        with pytest.raises(ValueError, match="positive"):
            SerialAllocator(start=0)

    def test_concurrent_allocations_are_unique(self):
        allocator = SerialAllocator()
        with ThreadPoolExecutor(max_workers=8) as pool:
            serials = list(pool.map(lambda _: allocator.next(), range(200)))
        assert sorted(serials) == list(range(1, 201))


class TestPersisted:
    def test_initialize_writes_start(self, tmp_path):
        path = tmp_path / "serial"
        SerialAllocator(path).initialize()
        assert path.read_text() == "01\n"

    def test_file_holds_next_serial(self, tmp_path):
        path = tmp_path / "serial"
        allocator = SerialAllocator(path)
        assert allocator.next() == 1
        assert path.read_text().strip() == "02"

    def test_survives_restart(self, tmp_path):
        path = tmp_path / "serial"
        first = SerialAllocator(path)
        for _ in range(15):
            first.next()
        second = SerialAllocator(path)
        assert second.next() == 16
        assert path.read_text().strip() == "11"

    def test_reads_openssl_style_file(self, tmp_path):
        path = tmp_path / "serial"
        path.write_text("1000\n")
        assert SerialAllocator(path).next() == 0x1000

    def test_empty_file_uses_start(self, tmp_path):
        path = tmp_path / "serial"
        path.write_text("")
        assert SerialAllocator(path).peek() == 1

    def test_no_temp_file_left(self, tmp_path):
        path = tmp_path / "serial"
        SerialAllocator(path).next()
        assert sorted(p.name for p in tmp_path.iterdir()) == ["serial"]

    def test_initialize_keeps_existing(self, tmp_path):
        path = tmp_path / "serial"
        path.write_text("0A\n")
        SerialAllocator(path).initialize()
        assert path.read_text() == "0A\n"

    def test_repr(self, tmp_path):
        assert "next=01" in repr(SerialAllocator(tmp_path / "serial"))


class TestCorruptFile:
    def test_garbage_names_file_and_authority(self, tmp_path):
        path = tmp_path / "serial"
        path.write_text("not-hex\n")
        with pytest.raises(EngineError, match="Corrupt serial file") as exc_info:
            SerialAllocator(path, authority="subCA")
        assert exc_info.value.authority == "subCA"
        assert exc_info.value.field == str(path)
        assert exc_info.value.operation == "load"

    def test_non_positive_serial(self, tmp_path):
        path = tmp_path / "serial"
        path.write_text("00\n")
        with pytest.raises(EngineError, match="non-positive"):
            SerialAllocator(path)

    def test_non_ascii_content(self, tmp_path):
        path = tmp_path / "serial"
        path.write_bytes(b"\xff\xfe01\n")
        with pytest.raises(EngineError, match="Cannot read serial file"):
            SerialAllocator(path)

    def test_store_allocators_carry_authority(self, tmp_path):
        from pkiforge.ca.storage import AuthorityStore

        store = AuthorityStore(tmp_path / "subCA", "sub")
        store.serial_path.parent.mkdir(parents=True, exist_ok=True)
        store.serial_path.write_text("zz\n")
        with pytest.raises(EngineError) as exc_info:
            store.serials()
        assert exc_info.value.authority == "sub"
