"""End-to-end two-tier hierarchy on disk: root, subordinate, leaf, revocation."""

from __future__ import annotations

from datetime import timedelta

import pytest
from cryptography import x509

from pkiforge.core.types import CertStatus, LedgerStatus, RevocationReason
from pkiforge.services.hierarchy import PKIEnvironment


@pytest.fixture()
def env(ec_settings):
    environment = PKIEnvironment(ec_settings)
    environment.init()
    return environment


def _basic_constraints(cert: x509.Certificate) -> x509.BasicConstraints:
    return cert.extensions.get_extension_for_class(x509.BasicConstraints).value


class TestTwoTierScenario:
    def test_full_hierarchy(self, env):
        root = env.create_root().issued
        assert _basic_constraints(root.certificate).path_length == 2
        assert root.not_after - root.not_before == timedelta(days=5475)
        assert root.certificate.issuer == root.certificate.subject

        sub = env.create_sub().issued
        assert _basic_constraints(sub.certificate).path_length == 0
        assert sub.not_after - sub.not_before == timedelta(days=3650)
        sub.certificate.verify_directly_issued_by(root.certificate)

        leaf = env.create_final("www.example.local").issued
        assert leaf.serial_hex == "01"
        assert leaf.is_ca is False
        leaf.certificate.verify_directly_issued_by(sub.certificate)
        san = leaf.certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["www.example.local"]

        entry = env.authority("sub").lookup(leaf.serial_number)
        assert entry.status == LedgerStatus.VALID
        assert entry.profile == "usr_cert"
        assert entry.fingerprint == leaf.fingerprint

    def test_revocation_reaches_crl_and_ocsp(self, env):
        env.create_root()
        env.create_sub()
        env.setup_ocsp()
        result = env.create_final("www.example.local")

        assert env.check_ocsp(result.files["certificate"]).status == CertStatus.GOOD

        env.revoke(result.issued.serial_number, RevocationReason.KEY_COMPROMISE)
        revocation_list, path = env.gen_crl("sub")
        assert result.issued.serial_number in revocation_list.revoked_serials
        crl = x509.load_pem_x509_crl(path.read_bytes())
        assert crl.is_signature_valid(env.authority("sub").key_pair.public_key)
        revoked = crl.get_revoked_certificate_by_serial_number(result.issued.serial_number)
        assert revoked is not None

        check = env.check_ocsp(result.files["certificate"])
        assert check.status == CertStatus.REVOKED
        assert check.revocation_reason == x509.ReasonFlags.key_compromise
        assert check.signature_valid

    def test_state_survives_restart(self, env, ec_settings):
        env.create_root()
        env.create_sub()
        env.create_final("a.example.local")

        restarted = PKIEnvironment(ec_settings)
        assert restarted.create_final("b.example.local").issued.serial_hex == "02"
        assert [e.serial_hex for e in restarted.status()] == ["01", "02"]
        assert [e.serial_hex for e in restarted.status("root")] == ["01", "02"]
