"""Tests for pkiforge.config.settings.build_settings."""

from __future__ import annotations

from pkiforge.config.settings import build_settings, default_policies, default_profiles


class TestDefaults:
    def test_empty_config(self):
        s = build_settings({})
        assert s.pki.workdir == "./pki_env"
        assert s.pki.root_validity_days == 5475
        assert s.pki.sub_validity_days == 3650
        assert s.pki.final_validity_days == 365
        assert s.pki.subject.country == "FR"
        assert s.keys.algorithm == "rsa"
        assert s.keys.ca_key_size == 4096
        assert s.ca.validity_overflow == "reject"
        assert s.crl.next_update_days == 30
        assert s.logging.format == "text"
        assert s.logging.audit.enabled is True

    def test_none_is_defaults(self):
        assert build_settings(None) == build_settings({})

    def test_authorities(self):
        auth = build_settings({}).authorities
        assert auth["root"].kind == "root"
        assert auth["root"].directory == "rootCA"
        assert auth["root"].policy == "strict"
        assert auth["root"].profile == "v3_ca"
        assert auth["sub"].kind == "subordinate"
        assert auth["sub"].parent == "root"
        assert auth["sub"].policy == "loose"


class TestProfiles:
    def test_builtin_profiles(self):
        profiles = default_profiles()
        assert set(profiles) == {"v3_ca", "v3_intermediate", "usr_cert", "ocsp_ext", "smime_ext", "v3_cross"}
        assert profiles["v3_ca"].path_length == 2
        assert profiles["v3_intermediate"].path_length == 0
        assert profiles["usr_cert"].ca is False
        assert profiles["usr_cert"].ocsp_url is None
        assert profiles["smime_ext"].ca is None
        assert profiles["ocsp_ext"].extended_key_usage_critical

    def test_cross_profile_carries_ocsp_url(self):
        s = build_settings({"pki": {"ocsp_url": "http://ocsp.test"}})
        assert s.ca.profiles["v3_cross"].ocsp_url == "http://ocsp.test"

    def test_override_merges_with_builtin(self):
        s = build_settings({"ca": {"profiles": {"usr_cert": {"extended_key_usages": ["server_auth"]}}}})
        usr = s.ca.profiles["usr_cert"]
        assert usr.extended_key_usages == ("server_auth",)
        assert usr.key_usages == ("digital_signature", "key_encipherment")

    def test_new_profile(self):
        s = build_settings({"ca": {"profiles": {"code": {"ca": False, "extended_key_usages": ["code_signing"]}}}})
        assert s.ca.profiles["code"].extended_key_usages == ("code_signing",)
        assert s.ca.profiles["code"].subject_key_identifier is True


class TestPolicies:
    def test_builtin_policies(self):
        policies = default_policies()
        assert policies["strict"].fields["organization"] == "match"
        assert policies["strict"].unknown_extensions == "reject"
        assert policies["loose"].fields["organization"] == "optional"
        assert "v3_intermediate" not in policies["loose"].allowed_profiles

    def test_policy_override_merges_fields(self):
        s = build_settings({"ca": {"policies": {"loose": {"fields": {"country": "match"}}}}})
        loose = s.ca.policies["loose"]
        assert loose.fields["country"] == "match"
        assert loose.fields["common_name"] == "supplied"
        assert loose.allowed_profiles == default_policies()["loose"].allowed_profiles

    def test_new_policy_defaults(self):
        s = build_settings({"ca": {"policies": {"medium": {"allowed_profiles": ["usr_cert"]}}}})
        medium = s.ca.policies["medium"]
        assert medium.fields == {"common_name": "supplied"}
        assert medium.ca_profiles == ()
        assert medium.unknown_extensions == "reject"
