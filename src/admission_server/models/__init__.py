"""Data models for admission reviews and TLS material."""

from .admission import (
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReview,
    ResponseStatus,
)
from .certificate import CertificateMaterial, CertificateRole

__all__ = [
    "AdmissionRequest",
    "AdmissionResponse",
    "AdmissionReview",
    "ResponseStatus",
    "CertificateMaterial",
    "CertificateRole",
]
