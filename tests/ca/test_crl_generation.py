"""Tests for pkiforge.ca.crl.RevocationManager."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from cryptography import x509

from pkiforge.ca.crl import RevocationManager, reason_flag
from pkiforge.core.errors import SigningError, ValidityWindowError
from pkiforge.core.types import RevocationReason
from pkiforge.repositories import SerialAllocator


@pytest.fixture()
def manager(ec_settings):
    return RevocationManager(ec_settings.crl)


class TestReasonFlag:
    def test_unspecified_has_no_flag(self):
        assert reason_flag(RevocationReason.UNSPECIFIED) is None

    def test_key_compromise(self):
        assert reason_flag(RevocationReason.KEY_COMPROMISE) == x509.ReasonFlags.key_compromise


class TestBuildCrl:
    def test_empty_crl(self, manager, root_ca):
        rl = manager.build_crl(root_ca)
        crl = rl.crl
        assert len(rl.entries) == 0
        assert crl.issuer == root_ca.certificate.subject
        assert crl.is_signature_valid(root_ca.certificate.public_key())
        assert rl.crl_number == 1
        assert crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number == 1

    def test_default_next_update(self, manager, root_ca):
        this_update = datetime(2026, 1, 1, tzinfo=UTC)
        rl = manager.build_crl(root_ca, this_update=this_update)
        assert rl.next_update == this_update + timedelta(days=30)
        assert rl.crl.next_update_utc == rl.next_update

    def test_lists_revoked_serials_only(self, manager, sub_ca, make_request):
        kept = sub_ca.issue(make_request("a.example.local"), "usr_cert", 30)
        gone = sub_ca.issue(make_request("b.example.local"), "usr_cert", 30)
        sub_ca.revoke(gone.serial_number, RevocationReason.KEY_COMPROMISE)

        rl = manager.build_crl(sub_ca)
        assert rl.revoked_serials == {gone.serial_number}
        revoked = rl.crl.get_revoked_certificate_by_serial_number(gone.serial_number)
        assert revoked is not None
        reason = revoked.extensions.get_extension_for_class(x509.CRLReason).value.reason
        assert reason == x509.ReasonFlags.key_compromise
        assert rl.crl.get_revoked_certificate_by_serial_number(kept.serial_number) is None

    def test_unspecified_reason_has_no_extension(self, manager, sub_ca, make_request):
        issued = sub_ca.issue(make_request(), "usr_cert", 30)
        sub_ca.revoke(issued.serial_number)
        revoked = manager.build_crl(sub_ca).crl.get_revoked_certificate_by_serial_number(issued.serial_number)
        assert len(revoked.extensions) == 0

    def test_crl_number_increments_per_authority(self, manager, root_ca, sub_ca):
        assert manager.build_crl(root_ca).crl_number == 1
        assert manager.build_crl(root_ca).crl_number == 2
        assert manager.build_crl(sub_ca).crl_number == 1

    def test_persisted_crl_numbers(self, ec_settings, root_ca, tmp_path):
        path = tmp_path / "crlnumber"
        RevocationManager(ec_settings.crl, {"root": SerialAllocator(path)}).build_crl(root_ca)
        again = RevocationManager(ec_settings.crl, {"root": SerialAllocator(path)}).build_crl(root_ca)
        assert again.crl_number == 2

    def test_past_next_update_accepted(self, manager, root_ca):
        this_update = datetime.now(UTC) - timedelta(days=10)
        rl = manager.build_crl(root_ca, this_update, this_update + timedelta(days=1))
        assert rl.next_update < datetime.now(UTC)

    def test_next_before_this_rejected(self, manager, root_ca):
        now = datetime.now(UTC)
        with pytest.raises(ValidityWindowError):
            manager.build_crl(root_ca, now, now - timedelta(seconds=1))

    def test_ledger_not_modified(self, manager, sub_ca, make_request):
        issued = sub_ca.issue(make_request(), "usr_cert", 30)
        sub_ca.revoke(issued.serial_number)
        before = list(sub_ca.ledger.all_entries())
        manager.build_crl(sub_ca)
        assert list(sub_ca.ledger.all_entries()) == before

    def test_sign_failure(self, manager, root_ca):
        with (
            patch(
                "cryptography.x509.CertificateRevocationListBuilder.sign",
                side_effect=ValueError("boom"),
            ),
            pytest.raises(SigningError) as exc_info,
        ):
            manager.build_crl(root_ca)
        assert exc_info.value.operation == "gen_crl"
