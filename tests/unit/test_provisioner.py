"""
Unit tests for TLS certificate provisioning.

Certificates are generated for real (RSA 2048) into ``tmp_path``; nothing
here touches the network.
"""

import base64
import os
import stat
from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID

from admission_server.errors import CertificateError, ConfigurationError
from admission_server.models.certificate import CertificateRole
from admission_server.settings import Settings
from admission_server.tls.provisioner import (
    build_trust_bundle,
    certificate_paths,
    create_authority,
    create_leaf,
    load_certificate_pair,
    load_or_create,
    provision_tls,
    service_dns_names,
    verify_issued_by,
    write_certificate_pair,
)

NAMESPACE = "test-ns"
APPLICATION = "test-webhook"


@pytest.fixture(scope="module")
def authority():
    return create_authority(NAMESPACE, APPLICATION)


@pytest.fixture(scope="module")
def leaf(authority):
    return create_leaf(
        authority,
        NAMESPACE,
        APPLICATION,
        dns_names=service_dns_names(APPLICATION, NAMESPACE),
    )


class TestCertificateCreation:
    """Tests for the generated CA and leaf certificates."""

    def test_authority_is_self_signed_ca(self, authority):
        assert authority.is_authority
        assert authority.is_self_signed
        assert authority.common_name == f"CA for {NAMESPACE}/{APPLICATION}"
        assert authority.matches_key()

        key_usage = authority.certificate.extensions.get_extension_for_class(
            x509.KeyUsage
        ).value
        assert key_usage.key_cert_sign
        assert key_usage.crl_sign

    def test_authority_valid_for_five_years(self, authority):
        lifetime = authority.not_after - authority.not_before
        assert timedelta(days=5 * 365) - timedelta(seconds=1) <= lifetime

    def test_leaf_is_server_certificate(self, authority, leaf):
        assert not leaf.is_authority
        assert not leaf.is_self_signed
        assert leaf.common_name == f"{NAMESPACE}/{APPLICATION}"
        assert leaf.certificate.issuer == authority.certificate.subject

        eku = leaf.certificate.extensions.get_extension_for_class(
            x509.ExtendedKeyUsage
        ).value
        assert ExtendedKeyUsageOID.SERVER_AUTH in eku

    def test_leaf_carries_service_dns_names(self, leaf):
        san = leaf.certificate.extensions.get_extension_for_class(
            x509.SubjectAlternativeName
        ).value
        assert san.get_values_for_type(x509.DNSName) == [
            APPLICATION,
            f"{APPLICATION}.{NAMESPACE}",
            f"{APPLICATION}.{NAMESPACE}.svc",
        ]

    def test_leaf_is_issued_by_authority(self, authority, leaf):
        assert verify_issued_by(leaf, authority)

    def test_leaf_fails_against_unrelated_authority(self, leaf):
        """A leaf signed by one CA does not validate against another."""
        unrelated = create_authority("other-ns", "other-app")
        assert not verify_issued_by(leaf, unrelated)

    def test_leaf_never_outlives_authority(self):
        """The leaf's expiry is clamped to its authority's expiry."""
        now = datetime.now(UTC)
        old_authority = create_authority(
            NAMESPACE, APPLICATION, now=now - timedelta(days=4 * 365)
        )
        leaf = create_leaf(old_authority, NAMESPACE, APPLICATION, now=now)

        assert leaf.not_after == old_authority.not_after
        assert leaf.not_after < now + timedelta(days=5 * 365)


class TestTrustBundle:
    """Tests for the base64 PEM trust bundle."""

    def test_bundle_decodes_to_authority(self, authority):
        bundle = build_trust_bundle(authority)
        decoded = x509.load_pem_x509_certificate(base64.b64decode(bundle))
        assert decoded == authority.certificate

    def test_bundle_is_ascii(self, authority):
        bundle = build_trust_bundle(authority)
        assert bundle.isascii()
        assert "\n" not in bundle


class TestLoadOrCreate:
    """Tests for loading certificate pairs from disk or creating them."""

    def test_creates_then_loads_same_authority(self, tmp_path):
        created, was_created = load_or_create(
            tmp_path, CertificateRole.AUTHORITY, NAMESPACE, APPLICATION
        )
        loaded, was_created_again = load_or_create(
            tmp_path, CertificateRole.AUTHORITY, NAMESPACE, APPLICATION
        )

        assert was_created
        assert not was_created_again
        assert loaded.certificate_pem == created.certificate_pem
        assert loaded.private_key_pem == created.private_key_pem

    def test_force_create_regenerates(self, tmp_path):
        first, _ = load_or_create(tmp_path, CertificateRole.AUTHORITY, NAMESPACE, APPLICATION)
        second, created = load_or_create(
            tmp_path, CertificateRole.AUTHORITY, NAMESPACE, APPLICATION, force_create=True
        )
        assert created
        assert second.certificate_pem != first.certificate_pem

    def test_file_names_and_modes(self, tmp_path):
        load_or_create(tmp_path, CertificateRole.AUTHORITY, NAMESPACE, APPLICATION)

        certificate_file, private_key_file = certificate_paths(
            tmp_path, CertificateRole.AUTHORITY
        )
        assert certificate_file.name == "ca.cert"
        assert private_key_file.name == "ca.key"
        assert stat.S_IMODE(os.stat(private_key_file).st_mode) == 0o600
        assert not list(tmp_path.glob("*.tmp"))

    def test_leaf_requires_authority(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_or_create(tmp_path, CertificateRole.LEAF, NAMESPACE, APPLICATION)

    def test_loaded_leaf_from_other_authority_is_rejected(self, tmp_path, leaf):
        certificate_file, private_key_file = certificate_paths(tmp_path, CertificateRole.LEAF)
        write_certificate_pair(leaf, certificate_file, private_key_file)
        unrelated = create_authority("other-ns", "other-app")

        with pytest.raises(CertificateError, match="not issued"):
            load_or_create(
                tmp_path,
                CertificateRole.LEAF,
                NAMESPACE,
                APPLICATION,
                authority=unrelated,
            )

    def test_corrupt_certificate_is_fatal(self, tmp_path):
        certificate_file, private_key_file = certificate_paths(
            tmp_path, CertificateRole.AUTHORITY
        )
        certificate_file.write_bytes(b"-----BEGIN CERTIFICATE-----\ngarbage\n")
        private_key_file.write_bytes(b"not a key")

        with pytest.raises(CertificateError) as exc_info:
            load_or_create(tmp_path, CertificateRole.AUTHORITY, NAMESPACE, APPLICATION)
        assert exc_info.value.fatal

    def test_mismatched_key_is_rejected(self, tmp_path, authority, leaf):
        certificate_file = tmp_path / "pair.cert"
        private_key_file = tmp_path / "pair.key"
        certificate_file.write_bytes(authority.certificate_pem)
        private_key_file.write_bytes(leaf.private_key_pem)

        with pytest.raises(CertificateError, match="does not match"):
            load_certificate_pair(certificate_file, private_key_file)


class TestProvisionTls:
    """Tests for resolving the server's TLS identity from settings."""

    def test_generates_chain_in_secrets_folder(self, secure_settings):
        assets = provision_tls(secure_settings)
        secrets_dir = secure_settings.effective_secrets_dir

        assert not assets.insecure
        assert assets.certificate_file == f"{secrets_dir}/srv.cert"
        assert assets.private_key_file == f"{secrets_dir}/srv.key"
        assert sorted(os.listdir(secrets_dir)) == ["ca.cert", "ca.key", "srv.cert", "srv.key"]

        authority = load_certificate_pair(f"{secrets_dir}/ca.cert", f"{secrets_dir}/ca.key")
        leaf = load_certificate_pair(assets.certificate_file, assets.private_key_file)
        assert verify_issued_by(leaf, authority)
        assert assets.ca_bundle == build_trust_bundle(authority)

    def test_is_idempotent(self, secure_settings):
        """A second run loads the existing files byte for byte."""
        first = provision_tls(secure_settings)
        with open(first.certificate_file, "rb") as handle:
            first_leaf = handle.read()

        second = provision_tls(secure_settings)
        with open(second.certificate_file, "rb") as handle:
            second_leaf = handle.read()

        assert second.ca_bundle == first.ca_bundle
        assert second_leaf == first_leaf

    def test_new_authority_forces_new_leaf(self, secure_settings):
        first = provision_tls(secure_settings)
        secrets_dir = secure_settings.effective_secrets_dir
        os.remove(f"{secrets_dir}/ca.cert")

        second = provision_tls(secure_settings)

        assert second.ca_bundle != first.ca_bundle
        authority = load_certificate_pair(f"{secrets_dir}/ca.cert", f"{secrets_dir}/ca.key")
        leaf = load_certificate_pair(second.certificate_file, second.private_key_file)
        assert verify_issued_by(leaf, authority)

    def test_builds_server_ssl_context(self, secure_settings):
        assets = provision_tls(secure_settings)
        assert assets.ssl_context() is not None

    def test_insecure_touches_no_files(self, insecure_settings, tmp_path):
        insecure_settings.cert_file = str(tmp_path / "missing.cert")

        assets = provision_tls(insecure_settings)

        assert assets.insecure
        assert assets.ca_bundle is None
        assert assets.ssl_context() is None
        assert list(tmp_path.iterdir()) == []

    def test_key_without_certificate_is_rejected(self, secure_settings, tmp_path):
        secure_settings.key_file = str(tmp_path / "srv.key")
        with pytest.raises(ConfigurationError):
            provision_tls(secure_settings)

    def test_ca_without_certificate_is_rejected(self, secure_settings, tmp_path):
        secure_settings.ca_file = str(tmp_path / "ca.cert")
        with pytest.raises(ConfigurationError):
            provision_tls(secure_settings)

    def test_certificate_without_key_is_rejected(self, tmp_path, leaf):
        certificate_file = tmp_path / "tls.crt"
        certificate_file.write_bytes(leaf.certificate_pem)
        settings = Settings(cert_file=str(certificate_file))

        with pytest.raises(ConfigurationError, match="private key"):
            provision_tls(settings)

    def test_supplied_pair_with_ca_file(self, tmp_path, authority, leaf):
        certificate_file = tmp_path / "tls.crt"
        private_key_file = tmp_path / "tls.key"
        ca_file = tmp_path / "ca.crt"
        write_certificate_pair(leaf, certificate_file, private_key_file)
        ca_file.write_bytes(authority.certificate_pem)

        assets = provision_tls(
            Settings(
                cert_file=str(certificate_file),
                key_file=str(private_key_file),
                ca_file=str(ca_file),
            )
        )

        assert assets.certificate_file == str(certificate_file)
        assert base64.b64decode(assets.ca_bundle) == authority.certificate_pem

    def test_supplied_pair_without_ca_has_no_bundle(self, tmp_path, leaf):
        certificate_file = tmp_path / "tls.crt"
        private_key_file = tmp_path / "tls.key"
        write_certificate_pair(leaf, certificate_file, private_key_file)

        assets = provision_tls(
            Settings(cert_file=str(certificate_file), key_file=str(private_key_file))
        )
        assert assets.ca_bundle is None

    def test_unreadable_supplied_certificate_is_fatal(self, tmp_path):
        settings = Settings(
            cert_file=str(tmp_path / "missing.crt"), key_file=str(tmp_path / "missing.key")
        )
        with pytest.raises(CertificateError):
            provision_tls(settings)
