"""
Admission webhook interfaces and registration.

Webhooks implement ``AdmissionWebhook`` (or are built from functions with
the ``mutating``/``validating`` decorators) and are mounted on the
dispatcher through the registration table.
"""

from .base import (
    AdmissionWebhook,
    FunctionWebhook,
    Initializable,
    ProvidesAdmissionVersions,
    ProvidesConfigurations,
    ProvidesRules,
    ProvidesSideEffects,
    ProvidesTimeout,
    WebhookConfiguration,
    WebhookType,
    get_webhook_action,
    mutating,
    validating,
    webhook_path,
)
from .registry import WebhookRegistration, build_registrations

__all__ = [
    "AdmissionWebhook",
    "FunctionWebhook",
    "Initializable",
    "ProvidesAdmissionVersions",
    "ProvidesConfigurations",
    "ProvidesRules",
    "ProvidesSideEffects",
    "ProvidesTimeout",
    "WebhookConfiguration",
    "WebhookRegistration",
    "WebhookType",
    "build_registrations",
    "get_webhook_action",
    "mutating",
    "validating",
    "webhook_path",
]
