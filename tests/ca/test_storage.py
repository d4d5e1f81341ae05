"""Tests for pkiforge.ca.storage.AuthorityStore."""

from __future__ import annotations

import json
import os
import stat

import pytest

from pkiforge.core.errors import AuthorityStateError
from pkiforge.core.types import AuthorityState


@pytest.fixture()
def root_store(tmp_path):
    from pkiforge.ca.storage import AuthorityStore

    return AuthorityStore(tmp_path / "rootCA", "root")


@pytest.fixture()
def sub_store(tmp_path):
    from pkiforge.ca.storage import AuthorityStore

    return AuthorityStore(tmp_path / "subCA", "sub")


class TestInitialize:
    def test_layout(self, root_store):
        assert not root_store.initialized
        root_store.initialize()
        assert root_store.initialized
        for name in ("certs", "crl", "csr", "newcerts", "final-certs", "private"):
            assert (root_store.directory / name).is_dir()
        assert stat.S_IMODE(os.stat(root_store.directory / "private").st_mode) == 0o700
        assert root_store.serial_path.read_text().strip() == "01"
        assert root_store.crlnumber_path.read_text().strip() == "01"
        assert root_store.ledger_path.read_text() == ""

    def test_idempotent(self, root_store):
        root_store.initialize()
        root_store.serials().next()
        root_store.initialize()
        assert root_store.serial_path.read_text().strip() == "02"

    def test_load_before_init(self, root_store, ec_settings, policy_engine):
        with pytest.raises(AuthorityStateError, match="init"):
            root_store.load_authority(ec_settings.authorities["root"], ec_settings.ca, policy_engine)


class TestLoadAuthority:
    def test_fresh_authority_is_uninitialized(self, root_store, ec_settings, policy_engine):
        root_store.initialize()
        authority = root_store.load_authority(ec_settings.authorities["root"], ec_settings.ca, policy_engine)
        assert authority.state == AuthorityState.UNINITIALIZED

    def test_active_round_trip(self, root_store, ec_settings, policy_engine, keys, base_subject):
        root_store.initialize()
        settings = ec_settings.authorities["root"]
        authority = root_store.load_authority(settings, ec_settings.ca, policy_engine)
        key_pair = keys.generate("ec", 256, "ca")
        root_store.save_key(key_pair)
        issued = authority.issue_self_signed(base_subject, 100, key_pair=key_pair)
        root_store.save_certificate(issued.certificate)

        reloaded = root_store.load_authority(settings, ec_settings.ca, policy_engine)
        assert reloaded.state == AuthorityState.ACTIVE
        assert reloaded.certificate == issued.certificate
        assert reloaded.key_pair.public_pem() == key_pair.public_pem()
        assert reloaded.lookup(issued.serial_number) is not None
        assert reloaded.serials.peek() == 2
        assert (root_store.newcerts_dir / "01.pem").is_file()

    def test_pending_csr_resumes_awaiting(self, sub_store, ec_settings, policy_engine, keys, base_subject):
        sub_store.initialize()
        settings = ec_settings.authorities["sub"]
        sub = sub_store.load_authority(settings, ec_settings.ca, policy_engine)
        key_pair = keys.generate("ec", 256, "ca")
        sub_store.save_key(key_pair)
        sub_store.save_csr(sub.create_signing_request(base_subject, key_pair=key_pair))

        reloaded = sub_store.load_authority(settings, ec_settings.ca, policy_engine)
        assert reloaded.state == AuthorityState.AWAITING_PARENT_SIGNATURE
        assert reloaded.pending_request.subject == base_subject

    def test_chain_round_trip(self, sub_store, root_ca, sub_ca):
        sub_store.initialize()
        sub_store.save_certificate(sub_ca.certificate, (root_ca.certificate,))
        assert sub_store.load_certificate() == sub_ca.certificate
        assert sub_store.load_chain() == (root_ca.certificate,)

    def test_profile_overrides_persisted(self, sub_store, ec_settings, policy_engine, sub_ca):
        sub_store.initialize()
        sub_ca.enable_revocation_endpoints("http://ocsp.test", "http://crl.test")
        sub_store.save_profile_overrides(sub_ca.profile_overrides)

        metadata = json.loads(sub_store.metadata_path.read_text())
        assert metadata["revocation_endpoints"]["usr_cert"] == {
            "ocsp_url": "http://ocsp.test",
            "crl_url": "http://crl.test",
        }
        reloaded = sub_store.load_authority(ec_settings.authorities["sub"], ec_settings.ca, policy_engine)
        assert reloaded.profile_settings("usr_cert").ocsp_url == "http://ocsp.test"
        assert reloaded.profile_settings("ocsp_ext").ocsp_url is None


class TestResponder:
    def test_absent(self, sub_store):
        assert sub_store.load_responder() is None

    def test_round_trip(self, sub_store, sub_ca, keys, make_request):
        key_pair = keys.generate("ec")
        issued = sub_ca.issue(make_request("OCSP-Responder", key_pair=key_pair), "ocsp_ext", 30)
        sub_store.save_responder(issued.certificate, key_pair)
        cert, loaded = sub_store.load_responder()
        assert cert == issued.certificate
        assert loaded.public_pem() == key_pair.public_pem()
