"""TLS identity provisioning for the webhook listener."""

from .provisioner import (
    TlsAssets,
    build_trust_bundle,
    create_authority,
    create_leaf,
    load_certificate_pair,
    load_or_create,
    provision_tls,
    verify_issued_by,
)

__all__ = [
    "TlsAssets",
    "build_trust_bundle",
    "create_authority",
    "create_leaf",
    "load_certificate_pair",
    "load_or_create",
    "provision_tls",
    "verify_issued_by",
]
