"""
Certificate material handled by the certificate provisioner.

A certificate and its private key always travel together. Material is created
once at bootstrap (or loaded verbatim from disk) and never mutated.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from functools import cached_property

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import NameOID

from admission_server.constants import (
    AUTHORITY_BASENAME,
    CERTIFICATE_SUFFIX,
    LEAF_BASENAME,
    PRIVATE_KEY_SUFFIX,
)


class CertificateRole(StrEnum):
    """Role of a certificate in the chain; selects its file names."""

    AUTHORITY = "authority"
    LEAF = "leaf"

    @property
    def basename(self) -> str:
        return AUTHORITY_BASENAME if self is CertificateRole.AUTHORITY else LEAF_BASENAME

    @property
    def certificate_filename(self) -> str:
        return self.basename + CERTIFICATE_SUFFIX

    @property
    def private_key_filename(self) -> str:
        return self.basename + PRIVATE_KEY_SUFFIX


@dataclass(frozen=True)
class CertificateMaterial:
    """A PEM encoded certificate together with its private key."""

    certificate_pem: bytes
    private_key_pem: bytes

    @cached_property
    def certificate(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.certificate_pem)

    @cached_property
    def private_key(self) -> PrivateKeyTypes:
        return serialization.load_pem_private_key(self.private_key_pem, password=None)

    @property
    def common_name(self) -> str:
        attributes = self.certificate.subject.get_attributes_for_oid(
            NameOID.COMMON_NAME
        )
        return str(attributes[0].value) if attributes else ""

    @property
    def is_authority(self) -> bool:
        try:
            constraints = self.certificate.extensions.get_extension_for_class(
                x509.BasicConstraints
            )
        except x509.ExtensionNotFound:
            return False
        return constraints.value.ca

    @property
    def is_self_signed(self) -> bool:
        return self.certificate.issuer == self.certificate.subject

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    def matches_key(self) -> bool:
        """Whether the private key belongs to the certificate's public key."""
        public_format = serialization.PublicFormat.SubjectPublicKeyInfo
        certificate_key = self.certificate.public_key().public_bytes(
            serialization.Encoding.PEM, public_format
        )
        own_key = self.private_key.public_key().public_bytes(
            serialization.Encoding.PEM, public_format
        )
        return certificate_key == own_key
