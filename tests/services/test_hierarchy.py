"""Tests for pkiforge.services.hierarchy.PKIEnvironment."""

from __future__ import annotations

import os
import stat

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509 import ocsp

from pkiforge.core.errors import (
    AlreadySignedError,
    AuthorityStateError,
    NotFoundError,
    PathLengthExceededError,
    PolicyViolation,
    ValidityWindowError,
)
from pkiforge.config.settings import build_settings
from pkiforge.core.types import AuthorityState, CertStatus, RevocationReason
from pkiforge.services.hierarchy import PKIEnvironment


@pytest.fixture()
def env(ec_settings):
    environment = PKIEnvironment(ec_settings)
    environment.init()
    return environment


@pytest.fixture()
def ready_env(env):
    env.create_root()
    env.create_sub()
    return env


def _ext(cert, cls):
    return cert.extensions.get_extension_for_class(cls).value


class TestInit:
    def test_creates_both_trees(self, ec_settings, tmp_path):
        environment = PKIEnvironment(ec_settings)
        dirs = environment.init()
        assert [d.name for d in dirs] == ["rootCA", "subCA"]
        for d in dirs:
            assert (d / "serial").read_text().strip() == "01"
            assert (d / "ledger.jsonl").exists()

    def test_workdir_override(self, ec_settings, tmp_path):
        environment = PKIEnvironment(ec_settings, workdir=tmp_path / "elsewhere")
        environment.init()
        assert (tmp_path / "elsewhere" / "rootCA" / "serial").exists()

    def test_commands_require_init(self, ec_settings):
        with pytest.raises(AuthorityStateError):
            PKIEnvironment(ec_settings).create_root()

    def test_unknown_authority_key(self, env):
        with pytest.raises(NotFoundError):
            env.store("third")


class TestCreateAuthorities:
    def test_create_root(self, env):
        result = env.create_root()
        assert result.issued.path_length == 2
        assert result.files["certificate"].is_file()
        assert stat.S_IMODE(os.stat(result.files["key"]).st_mode) == 0o400

    def test_create_root_twice(self, env):
        env.create_root()
        with pytest.raises(AlreadySignedError):
            env.create_root()

    def test_create_sub(self, env):
        root = env.create_root().issued
        result = env.create_sub()
        cert = result.issued.certificate
        assert result.issued.path_length == 0
        cert.verify_directly_issued_by(root.certificate)
        assert env.authority("sub").state == AuthorityState.ACTIVE
        assert not env.store("sub").csr_path.exists()
        chain = x509.load_pem_x509_certificates(result.files["chain"].read_bytes())
        assert chain == [root.certificate]

    def test_create_sub_before_root(self, env):
        with pytest.raises(AuthorityStateError):
            env.create_sub()
        # CSR is kept so the subordinate can be signed once the root exists
        assert env.authority("sub").state == AuthorityState.AWAITING_PARENT_SIGNATURE
        env.create_root()
        assert env.create_sub().issued.serial_hex == "02"

    def test_create_sub_twice(self, ready_env):
        with pytest.raises(AlreadySignedError):
            ready_env.create_sub()

    def test_state_survives_new_environment(self, ready_env, ec_settings):
        fresh = PKIEnvironment(ec_settings)
        assert fresh.authority("root").state == AuthorityState.ACTIVE
        assert fresh.authority("sub").state == AuthorityState.ACTIVE
        assert [e.serial_hex for e in fresh.status("root")] == ["01", "02"]


class TestEndEntities:
    def test_create_final(self, ready_env):
        result = ready_env.create_final("www.example.local")
        cert = result.issued.certificate
        assert result.issued.serial_hex == "01"
        assert _ext(cert, x509.SubjectAlternativeName).get_values_for_type(x509.DNSName) == [
            "www.example.local",
        ]
        assert set(result.files) == {"certificate", "key", "csr"}
        assert result.files["certificate"].name == "www.example.local.cert.pem"
        cert.verify_directly_issued_by(ready_env.authority("sub").certificate)

    def test_create_final_plain_name_has_no_san(self, ready_env):
        cert = ready_env.create_final("alice").issued.certificate
        with pytest.raises(x509.ExtensionNotFound):
            cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)

    def test_create_smime(self, ready_env):
        result = ready_env.create_smime("user@example.local", b"pw")
        cert = result.issued.certificate
        assert _ext(cert, x509.SubjectAlternativeName).get_values_for_type(x509.RFC822Name) == [
            "user@example.local",
        ]
        assert x509.oid.ExtendedKeyUsageOID.EMAIL_PROTECTION in _ext(cert, x509.ExtendedKeyUsage)
        with pytest.raises(x509.ExtensionNotFound):
            cert.extensions.get_extension_for_class(x509.BasicConstraints)

        bundle_path = result.files["pkcs12"]
        assert stat.S_IMODE(os.stat(bundle_path).st_mode) == 0o400
        key, bundled_cert, cas = pkcs12.load_key_and_certificates(bundle_path.read_bytes(), b"pw")
        assert key is not None
        assert bundled_cert == cert
        sub = ready_env.authority("sub")
        assert set(cas) == {sub.certificate, *sub.chain}

    def test_rejected_issuance_writes_nothing(self, ec_config_data):
        ec_config_data["pki"].update(sub_validity_days=30, final_validity_days=365)
        environment = PKIEnvironment(build_settings(ec_config_data))
        environment.init()
        environment.create_root()
        environment.create_sub()
        out = environment.store("sub").final_certs_dir

        with pytest.raises(ValidityWindowError):
            environment.create_final("www.example.local")
        with pytest.raises(ValidityWindowError):
            environment.create_smime("user@example.local")

        assert not out.exists() or list(out.iterdir()) == []
        assert environment.status() == []

    def test_cross_sign(self, ready_env):
        result = ready_env.cross_sign()
        assert result.issued.profile == "v3_cross"
        assert result.files["certificate"].is_file()
        cn = result.issued.subject.common_name
        assert cn == "Cross-Signed"


class TestRevocation:
    def test_revoke_and_crl(self, ready_env):
        issued = ready_env.create_final("www.example.local").issued
        ready_env.revoke(issued.serial_number, "keyCompromise")
        revocation_list, path = ready_env.gen_crl("sub")
        assert revocation_list.revoked_serials == {issued.serial_number}
        crl = x509.load_pem_x509_crl(path.read_bytes())
        assert crl.get_revoked_certificate_by_serial_number(issued.serial_number) is not None

    def test_root_crl_lists_revoked_sub(self, ready_env):
        sub_serial = ready_env.authority("sub").certificate.serial_number
        ready_env.revoke(sub_serial, RevocationReason.CA_COMPROMISE, "root")
        revocation_list, _ = ready_env.gen_crl()
        assert revocation_list.revoked_serials == {sub_serial}

    def test_status(self, ready_env):
        ready_env.create_final("a.example.local")
        ready_env.create_final("b.example.local")
        ready_env.revoke(1)
        entries = ready_env.status()
        assert [(e.serial_hex, e.status) for e in entries] == [("01", "revoked"), ("02", "valid")]


class TestOcsp:
    def test_setup_ocsp(self, ready_env):
        result = ready_env.setup_ocsp()
        responder = result.issued.certificate
        assert x509.oid.ExtendedKeyUsageOID.OCSP_SIGNING in _ext(responder, x509.ExtendedKeyUsage)
        assert responder.extensions.get_extension_for_class(x509.ExtendedKeyUsage).critical
        assert ready_env.responder("sub").delegated

        leaf = ready_env.create_final("www.example.local").issued.certificate
        aia = _ext(leaf, x509.AuthorityInformationAccess)
        assert aia[0].access_location.value == ready_env.settings.pki.ocsp_url
        cdp = _ext(leaf, x509.CRLDistributionPoints)
        assert cdp[0].full_name[0].value == ready_env.settings.pki.crl_url

    def test_endpoints_persist(self, ready_env, ec_settings):
        ready_env.setup_ocsp()
        fresh = PKIEnvironment(ec_settings)
        leaf = fresh.create_final("later.example.local").issued.certificate
        assert _ext(leaf, x509.AuthorityInformationAccess)

    def test_check_good(self, ready_env):
        ready_env.setup_ocsp()
        path = ready_env.create_final("www.example.local").files["certificate"]
        check = ready_env.check_ocsp(path)
        assert check.authority == "sub"
        assert check.response_status == ocsp.OCSPResponseStatus.SUCCESSFUL
        assert check.status == CertStatus.GOOD
        assert check.signature_valid

    def test_check_revoked(self, ready_env):
        result = ready_env.create_final("www.example.local")
        ready_env.revoke(result.issued.serial_number, "superseded")
        check = ready_env.check_ocsp(result.files["certificate"])
        assert check.status == CertStatus.REVOKED
        assert check.revocation_reason == x509.ReasonFlags.superseded
        assert check.revocation_time is not None
        assert check.signature_valid

    def test_check_sub_certificate_against_root(self, ready_env):
        path = ready_env.store("sub").cert_path
        check = ready_env.check_ocsp(path)
        assert check.authority == "root"
        assert check.status == CertStatus.GOOD

    def test_check_missing_file(self, ready_env, tmp_path):
        with pytest.raises(NotFoundError):
            ready_env.check_ocsp(tmp_path / "nope.pem")

    def test_check_garbage_file(self, ready_env, tmp_path):
        path = tmp_path / "bad.pem"
        path.write_text("-----BEGIN CERTIFICATE-----\nnot base64\n")
        with pytest.raises(PolicyViolation) as exc_info:
            ready_env.check_ocsp(path)
        assert exc_info.value.field == str(path)
        assert exc_info.value.operation == "check_ocsp"

    def test_check_foreign_certificate(self, ready_env, root_ca, tmp_path):
        path = tmp_path / "foreign.pem"
        path.write_bytes(root_ca.certificate.public_bytes(_pem()))
        with pytest.raises(NotFoundError):
            ready_env.check_ocsp(path)


class TestPathLengthThroughEnvironment:
    def test_sub_cannot_cross_sign_further(self, ready_env):
        sub = ready_env.authority("sub")
        with pytest.raises(PathLengthExceededError):
            sub.cross_sign(sub.key_pair.public_key, sub.subject, 30)


def _pem():
    from cryptography.hazmat.primitives import serialization

    return serialization.Encoding.PEM
