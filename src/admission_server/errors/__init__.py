"""
Error handling module for the admission webhook server.

This module provides the error hierarchy separating fatal startup and
transport failures from per-request protocol and handler failures.
"""

from .server_errors import (
    AdmissionProtocolError,
    AdmissionServerError,
    CertificateError,
    ConfigurationError,
    HandlerTimeoutError,
    RegistrationError,
    ServerStateError,
    TransportError,
    WebhookHandlerError,
)

__all__ = [
    "AdmissionServerError",
    "ConfigurationError",
    "CertificateError",
    "RegistrationError",
    "AdmissionProtocolError",
    "WebhookHandlerError",
    "HandlerTimeoutError",
    "TransportError",
    "ServerStateError",
]
