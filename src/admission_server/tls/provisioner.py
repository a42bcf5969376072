"""
Certificate provisioner for the webhook listener.

Produces the TLS identity the HTTPS listener presents and the trust bundle
the webhook registration carries. Both must come from the same authority, so
the authority and the leaf are provisioned together:

- An existing pair on disk is loaded verbatim; unreadable files are fatal and
  are never regenerated behind the operator's back.
- Missing pairs are synthesised (self-signed authority, leaf signed by it) and
  written with a temporary file and an atomic rename per file.
- Externally supplied certificates are only validated, never generated.
"""

import base64
import contextlib
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from admission_server.constants import (
    CERTIFICATE_VALIDITY,
    PRIVATE_KEY_FILE_MODE,
    RSA_KEY_SIZE,
    RSA_PUBLIC_EXPONENT,
)
from admission_server.errors import CertificateError, ConfigurationError
from admission_server.models.certificate import CertificateMaterial, CertificateRole
from admission_server.observability.metrics import metrics_collector
from admission_server.settings import Settings

logger = logging.getLogger(__name__)

CERTIFICATE_FILE_MODE = 0o644


@dataclass(frozen=True)
class TlsAssets:
    """Resolved TLS inputs for the listener and the manifest generator."""

    insecure: bool
    certificate_file: str | None = None
    private_key_file: str | None = None
    ca_bundle: str | None = None

    def ssl_context(self) -> ssl.SSLContext | None:
        """
        Build the server side SSL context.

        Returns:
            An SSL context, or None in insecure mode

        Raises:
            CertificateError: If the certificate chain cannot be loaded
        """
        if self.insecure or not self.certificate_file:
            return None

        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        try:
            context.load_cert_chain(self.certificate_file, self.private_key_file)
        except (OSError, ssl.SSLError) as e:
            raise CertificateError(
                f"Failed to load certificate chain: {e}",
                path=self.certificate_file,
                cause=e,
            ) from e
        return context


def authority_common_name(namespace: str, application_name: str) -> str:
    return f"CA for {namespace}/{application_name}"


def leaf_common_name(namespace: str, application_name: str) -> str:
    return f"{namespace}/{application_name}"


def service_dns_names(service_name: str, namespace: str) -> list[str]:
    """DNS names the API server uses to reach the webhook service."""
    return [
        service_name,
        f"{service_name}.{namespace}",
        f"{service_name}.{namespace}.svc",
    ]


def certificate_paths(directory: str | Path, role: CertificateRole) -> tuple[Path, Path]:
    folder = Path(directory)
    return (
        folder / role.certificate_filename,
        folder / role.private_key_filename,
    )


def load_certificate_pair(
    certificate_file: str | Path, private_key_file: str | Path
) -> CertificateMaterial:
    """
    Load and validate a PEM certificate and its private key.

    Args:
        certificate_file: Path of the PEM certificate
        private_key_file: Path of the PEM private key

    Returns:
        The decoded certificate material

    Raises:
        CertificateError: If a file is unreadable, undecodable, or the key does
            not belong to the certificate
    """
    try:
        material = CertificateMaterial(
            certificate_pem=Path(certificate_file).read_bytes(),
            private_key_pem=Path(private_key_file).read_bytes(),
        )
    except OSError as e:
        raise CertificateError(
            f"Failed to read certificate files: {e.strerror or e}",
            path=str(e.filename or certificate_file),
            cause=e,
        ) from e

    try:
        material.certificate  # noqa: B018 - decode eagerly
    except ValueError as e:
        raise CertificateError(
            "Failed to decode certificate", path=str(certificate_file), cause=e
        ) from e

    try:
        material.private_key  # noqa: B018 - decode eagerly
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateError(
            "Failed to decode private key", path=str(private_key_file), cause=e
        ) from e

    if not material.matches_key():
        raise CertificateError(
            "Private key does not match certificate", path=str(private_key_file)
        )

    return material


def _generate_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE
    )


def _encode(certificate: x509.Certificate, private_key: rsa.RSAPrivateKey) -> CertificateMaterial:
    return CertificateMaterial(
        certificate_pem=certificate.public_bytes(serialization.Encoding.PEM),
        private_key_pem=private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ),
    )


def create_authority(
    namespace: str, application_name: str, now: datetime | None = None
) -> CertificateMaterial:
    """
    Create a self-signed certificate authority.

    Args:
        namespace: Namespace the webhook is deployed into
        application_name: Name of the webhook application
        now: Issuance time (defaults to the current time)

    Returns:
        The authority material, valid for five years
    """
    now = now or datetime.now(UTC)
    private_key = _generate_private_key()
    public_key = private_key.public_key()
    name = x509.Name(
        [
            x509.NameAttribute(
                NameOID.COMMON_NAME, authority_common_name(namespace, application_name)
            )
        ]
    )

    builder = x509.CertificateBuilder()
    builder = builder.subject_name(name)
    builder = builder.issuer_name(name)
    builder = builder.not_valid_before(now)
    builder = builder.not_valid_after(now + CERTIFICATE_VALIDITY)
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.public_key(public_key)
    builder = builder.add_extension(
        x509.BasicConstraints(ca=True, path_length=0), critical=True
    )
    builder = builder.add_extension(
        x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=True,
            crl_sign=True,
            encipher_only=False,
            decipher_only=False,
        ),
        critical=True,
    )
    builder = builder.add_extension(
        x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False
    )

    certificate = builder.sign(private_key=private_key, algorithm=hashes.SHA256())
    return _encode(certificate, private_key)


def create_leaf(
    authority: CertificateMaterial,
    namespace: str,
    application_name: str,
    dns_names: list[str] | None = None,
    now: datetime | None = None,
) -> CertificateMaterial:
    """
    Create a server certificate signed by the given authority.

    The leaf never outlives its authority: its expiry is the earlier of five
    years from now and the authority's own expiry.

    Args:
        authority: Authority whose key signs the leaf
        namespace: Namespace the webhook is deployed into
        application_name: Name of the webhook application
        dns_names: Subject alternative names for the service
        now: Issuance time (defaults to the current time)

    Returns:
        The leaf material
    """
    now = now or datetime.now(UTC)
    not_after = min(now + CERTIFICATE_VALIDITY, authority.not_after)
    private_key = _generate_private_key()
    public_key = private_key.public_key()
    authority_key = authority.private_key

    builder = x509.CertificateBuilder()
    builder = builder.subject_name(
        x509.Name(
            [
                x509.NameAttribute(
                    NameOID.COMMON_NAME, leaf_common_name(namespace, application_name)
                )
            ]
        )
    )
    builder = builder.issuer_name(authority.certificate.subject)
    builder = builder.not_valid_before(now)
    builder = builder.not_valid_after(not_after)
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.public_key(public_key)
    builder = builder.add_extension(
        x509.BasicConstraints(ca=False, path_length=None), critical=True
    )
    builder = builder.add_extension(
        x509.KeyUsage(
            digital_signature=True,
            content_commitment=False,
            key_encipherment=True,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=False,
            crl_sign=False,
            encipher_only=False,
            decipher_only=False,
        ),
        critical=True,
    )
    builder = builder.add_extension(
        x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
    )
    builder = builder.add_extension(
        x509.AuthorityKeyIdentifier.from_issuer_public_key(
            authority_key.public_key()  # type: ignore[union-attr]
        ),
        critical=False,
    )
    if dns_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in dns_names]),
            critical=False,
        )

    certificate = builder.sign(
        private_key=authority_key,  # type: ignore[arg-type]
        algorithm=hashes.SHA256(),
    )
    return _encode(certificate, private_key)


def verify_issued_by(leaf: CertificateMaterial, authority: CertificateMaterial) -> bool:
    """Whether ``leaf`` carries a valid signature from ``authority``."""
    try:
        leaf.certificate.verify_directly_issued_by(authority.certificate)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _stage(path: Path, data: bytes, mode: int) -> str:
    """Write ``data`` to a temporary file next to ``path`` and return its name."""
    fd, staged = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(staged, mode)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(staged)
        raise
    return staged


def write_certificate_pair(
    material: CertificateMaterial, certificate_file: Path, private_key_file: Path
) -> None:
    """
    Persist a certificate pair, replacing any previous content.

    Both files are staged completely before either is renamed into place, so
    a crash never leaves a truncated file under a well-known name.

    Raises:
        CertificateError: If the files cannot be written
    """
    staged: list[str] = []
    try:
        staged.append(
            _stage(certificate_file, material.certificate_pem, CERTIFICATE_FILE_MODE)
        )
        staged.append(
            _stage(private_key_file, material.private_key_pem, PRIVATE_KEY_FILE_MODE)
        )
        os.replace(staged[0], certificate_file)
        os.replace(staged[1], private_key_file)
    except OSError as e:
        for leftover in staged:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(leftover)
        raise CertificateError(
            f"Failed to write certificate files: {e.strerror or e}",
            path=str(e.filename or certificate_file),
            cause=e,
        ) from e


def load_or_create(
    directory: str | Path,
    role: CertificateRole,
    namespace: str,
    application_name: str,
    force_create: bool = False,
    authority: CertificateMaterial | None = None,
    dns_names: list[str] | None = None,
) -> tuple[CertificateMaterial, bool]:
    """
    Load the certificate pair of a role from disk or create a new one.

    Args:
        directory: Folder holding the PEM files
        role: Authority (``ca.cert``/``ca.key``) or leaf (``srv.cert``/``srv.key``)
        namespace: Namespace the webhook is deployed into
        application_name: Name of the webhook application
        force_create: Regenerate even when both files exist
        authority: Signing authority, required for the leaf role
        dns_names: Subject alternative names for a leaf

    Returns:
        Tuple of the material and whether it was newly created

    Raises:
        CertificateError: If existing files cannot be decoded or new files
            cannot be written
        ConfigurationError: If a leaf is requested without an authority
    """
    if role is CertificateRole.LEAF and authority is None:
        raise ConfigurationError("A leaf certificate requires a signing authority")

    certificate_file, private_key_file = certificate_paths(directory, role)

    if not force_create and certificate_file.is_file() and private_key_file.is_file():
        material = load_certificate_pair(certificate_file, private_key_file)
        if role is CertificateRole.LEAF and not verify_issued_by(material, authority):  # type: ignore[arg-type]
            raise CertificateError(
                "Leaf certificate was not issued by the certificate authority",
                path=str(certificate_file),
            )
        logger.info(
            f"Loaded {role} certificate from {certificate_file}",
            extra={"certificate_role": str(role), "certificate_file": str(certificate_file)},
        )
        metrics_collector.record_certificate(str(role), created=False)
        return material, False

    if role is CertificateRole.AUTHORITY:
        material = create_authority(namespace, application_name)
    else:
        material = create_leaf(
            authority,  # type: ignore[arg-type]
            namespace,
            application_name,
            dns_names=dns_names,
        )

    write_certificate_pair(material, certificate_file, private_key_file)
    logger.info(
        f"Created {role} certificate '{material.common_name}' at {certificate_file} "
        f"(valid until {material.not_after.isoformat()})",
        extra={"certificate_role": str(role), "certificate_file": str(certificate_file)},
    )
    metrics_collector.record_certificate(str(role), created=True)
    return material, True


def build_trust_bundle(authority: CertificateMaterial) -> str:
    """PEM encode the authority certificate and base64 the result."""
    pem = authority.certificate.public_bytes(serialization.Encoding.PEM)
    return base64.b64encode(pem).decode("ascii")


def provision_tls(settings: Settings) -> TlsAssets:
    """
    Resolve the TLS identity of the server from its settings.

    - Insecure mode: nothing is created or read; TLS inputs are ignored.
    - No certificate supplied: a CA and a leaf are loaded from or created in
      the secrets folder and the trust bundle is derived from the CA.
    - Certificate supplied: the pair is validated; a supplied CA file is
      base64 encoded verbatim as the trust bundle.

    Args:
        settings: Server settings

    Returns:
        The resolved TLS assets

    Raises:
        ConfigurationError: On inconsistent TLS inputs or unusable files
    """
    if settings.insecure:
        if settings.cert_file or settings.key_file or settings.ca_file:
            logger.warning("TLS files will be ignored because insecure mode is enabled")
        return TlsAssets(insecure=True)

    if not settings.cert_file:
        if settings.key_file or settings.ca_file:
            raise ConfigurationError(
                "A private key or CA file was supplied without a certificate",
                user_action="Supply the certificate, key and CA together, or none of them",
            )

        secrets_dir = Path(settings.effective_secrets_dir)
        try:
            secrets_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CertificateError(
                f"Failed to create secrets folder: {e.strerror or e}",
                path=str(secrets_dir),
                cause=e,
            ) from e
        if not secrets_dir.is_dir():
            raise CertificateError("Secrets folder is not a directory", path=str(secrets_dir))

        authority, created = load_or_create(
            secrets_dir,
            CertificateRole.AUTHORITY,
            settings.namespace,
            settings.application_name,
        )
        load_or_create(
            secrets_dir,
            CertificateRole.LEAF,
            settings.namespace,
            settings.application_name,
            force_create=created,
            authority=authority,
            dns_names=service_dns_names(
                settings.effective_service_name, settings.namespace
            ),
        )

        certificate_file, private_key_file = certificate_paths(
            secrets_dir, CertificateRole.LEAF
        )
        return TlsAssets(
            insecure=False,
            certificate_file=str(certificate_file),
            private_key_file=str(private_key_file),
            ca_bundle=build_trust_bundle(authority),
        )

    if not settings.key_file:
        raise ConfigurationError(
            "Missing private key file for the supplied certificate",
            user_action="Set WEBHOOK_KEY_FILE together with WEBHOOK_CERT_FILE",
        )

    load_certificate_pair(settings.cert_file, settings.key_file)
    logger.info(f"Using supplied certificate {settings.cert_file}")

    ca_bundle = None
    if settings.ca_file:
        try:
            content = Path(settings.ca_file).read_bytes()
        except OSError as e:
            raise CertificateError(
                f"Failed to read CA file: {e.strerror or e}",
                path=settings.ca_file,
                cause=e,
            ) from e
        ca_bundle = base64.b64encode(content).decode("ascii")

    return TlsAssets(
        insecure=False,
        certificate_file=settings.cert_file,
        private_key_file=settings.key_file,
        ca_bundle=ca_bundle,
    )
