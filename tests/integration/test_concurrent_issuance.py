"""Concurrent issuance against a single authority.

Serial allocation and ledger commit run under the authority lock, so
parallel callers must never share a serial.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from pkiforge.services.hierarchy import PKIEnvironment

_WORKERS = 8
_REQUESTS = 24


class TestConcurrentIssuance:
    def test_in_memory_serials_unique(self, sub_ca, make_request):
        requests = [make_request(f"host{i}.example.local") for i in range(_REQUESTS)]
        with ThreadPoolExecutor(max_workers=_WORKERS) as pool:
            issued = list(pool.map(lambda r: sub_ca.issue(r, "usr_cert", 30), requests))

        serials = [i.serial_number for i in issued]
        assert len(set(serials)) == _REQUESTS
        assert sorted(serials) == list(range(1, _REQUESTS + 1))
        assert len(sub_ca.ledger) == _REQUESTS

    def test_ledger_order_strictly_increasing(self, sub_ca, make_request):
        requests = [make_request(f"host{i}.example.local") for i in range(_REQUESTS)]
        with ThreadPoolExecutor(max_workers=_WORKERS) as pool:
            list(pool.map(lambda r: sub_ca.issue(r, "usr_cert", 30), requests))

        recorded = [e.serial_number for e in sub_ca.ledger.all_entries()]
        assert all(a < b for a, b in zip(recorded, recorded[1:], strict=False))

    def test_persisted_serials_unique(self, ec_settings):
        env = PKIEnvironment(ec_settings)
        env.init()
        env.create_root()
        env.create_sub()
        names = [f"host{i}.example.local" for i in range(_REQUESTS)]
        with ThreadPoolExecutor(max_workers=_WORKERS) as pool:
            results = list(pool.map(env.create_final, names))

        serials = {r.issued.serial_number for r in results}
        assert serials == set(range(1, _REQUESTS + 1))

        restarted = PKIEnvironment(ec_settings)
        assert [e.serial_number for e in restarted.status()] == sorted(serials)
        assert restarted.store("sub").serial_path.read_text().strip() == f"{_REQUESTS + 1:02X}"
