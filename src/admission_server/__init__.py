"""
Admission Server - core of a Kubernetes admission webhook server.

This package provides:
- Self-signed CA and serving certificate provisioning
- Dispatch of admission reviews to mutating and validating webhooks
- A signal-aware HTTPS server lifecycle
"""

__version__ = "0.1.0"

from admission_server.dispatcher import AdmissionDispatcher
from admission_server.models.admission import AdmissionResponse, AdmissionReview
from admission_server.runner import main, run_webhooks
from admission_server.server import WebhookServer
from admission_server.settings import DispatchMode, Settings
from admission_server.webhooks.base import (
    AdmissionWebhook,
    WebhookType,
    mutating,
    validating,
)

__all__ = [
    "AdmissionDispatcher",
    "AdmissionResponse",
    "AdmissionReview",
    "AdmissionWebhook",
    "DispatchMode",
    "Settings",
    "WebhookServer",
    "WebhookType",
    "main",
    "mutating",
    "run_webhooks",
    "validating",
]
