"""
Deployment data handed to the manifest generator.

Rendering Dockerfiles, Deployment manifests and deploy scripts happens
outside this package. This module assembles everything such a generator
needs: names, ports, the TLS trust bundle and, per webhook, the optional
metadata each webhook chooses to report.
"""

from collections.abc import Iterable
from typing import Any

from kubernetes.client import ApiClient, V1RuleWithOperations
from pydantic import BaseModel, Field

from admission_server.constants import (
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    DEFAULT_SIDE_EFFECTS,
    DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
    SUPPORTED_ADMISSION_VERSIONS,
    UNPRIVILEGED_HTTP_PORT,
    UNPRIVILEGED_HTTPS_PORT,
)
from admission_server.settings import Settings
from admission_server.tls.provisioner import TlsAssets
from admission_server.webhooks.base import (
    AdmissionWebhook,
    ProvidesAdmissionVersions,
    ProvidesConfigurations,
    ProvidesRules,
    ProvidesSideEffects,
    ProvidesTimeout,
    WebhookType,
)
from admission_server.webhooks.registry import build_registrations


class WebhookConfigurationData(BaseModel):
    """A configuration key a webhook reads."""

    name: str
    description: str = ""
    default_value: str | None = None


class WebhookData(BaseModel):
    """Registration entry for one webhook."""

    name: str
    path: str
    rules: list[dict[str, Any]] = Field(default_factory=list)
    configurations: list[WebhookConfigurationData] = Field(default_factory=list)
    timeout_seconds: int = DEFAULT_WEBHOOK_TIMEOUT_SECONDS
    side_effects: str = DEFAULT_SIDE_EFFECTS
    admission_versions: list[str] = Field(
        default_factory=lambda: list(SUPPORTED_ADMISSION_VERSIONS)
    )


class DeploymentData(BaseModel):
    """Everything the manifest generator needs to deploy the webhook server."""

    name: str
    namespace: str
    service_name: str
    secret_name: str
    run_as_user: int
    container_port: int
    service_port: int
    insecure: bool
    ca_bundle: str | None = None
    mutating_webhooks: list[WebhookData] = Field(default_factory=list)
    validating_webhooks: list[WebhookData] = Field(default_factory=list)

    @property
    def all_webhooks(self) -> list[WebhookData]:
        return [*self.mutating_webhooks, *self.validating_webhooks]


def resolve_ports(settings: Settings) -> tuple[int, int]:
    """
    Resolve the container and service ports.

    An explicit port wins for the container. Otherwise a root container
    listens on 443/80 and any other user on 8443/8080. The service always
    exposes 443 (TLS) or 80 (insecure).

    Returns:
        Tuple of (container_port, service_port)
    """
    service_port = DEFAULT_HTTP_PORT if settings.insecure else DEFAULT_HTTPS_PORT
    if settings.port:
        return settings.port, service_port
    if settings.run_as_user == 0:
        return service_port, service_port
    container_port = UNPRIVILEGED_HTTP_PORT if settings.insecure else UNPRIVILEGED_HTTPS_PORT
    return container_port, service_port


def _serialize_rule(rule: V1RuleWithOperations | dict[str, Any]) -> dict[str, Any]:
    if isinstance(rule, dict):
        return rule
    return ApiClient().sanitize_for_serialization(rule)


def describe_webhook(webhook: AdmissionWebhook) -> WebhookData:
    """Collect whatever optional metadata a webhook reports."""
    data = WebhookData(name=webhook.name, path=webhook.path)
    if isinstance(webhook, ProvidesRules):
        data.rules = [_serialize_rule(rule) for rule in webhook.rules()]
    if isinstance(webhook, ProvidesConfigurations):
        data.configurations = [
            WebhookConfigurationData(
                name=item.name,
                description=item.description,
                default_value=item.default_value,
            )
            for item in webhook.configurations()
        ]
    if isinstance(webhook, ProvidesTimeout):
        data.timeout_seconds = webhook.timeout_seconds()
    if isinstance(webhook, ProvidesSideEffects):
        data.side_effects = webhook.side_effects()
    if isinstance(webhook, ProvidesAdmissionVersions):
        data.admission_versions = list(webhook.admission_versions())
    return data


def build_deployment_data(
    settings: Settings,
    webhooks: Iterable[AdmissionWebhook],
    tls: TlsAssets,
) -> DeploymentData:
    """
    Assemble the deployment data for the manifest generator.

    Args:
        settings: Server settings
        webhooks: Webhooks the server will mount
        tls: Provisioned TLS assets (source of the trust bundle)

    Returns:
        The deployment data

    Raises:
        RegistrationError: If the webhooks cannot be registered
    """
    container_port, service_port = resolve_ports(settings)
    deployment = DeploymentData(
        name=settings.application_name,
        namespace=settings.namespace,
        service_name=settings.effective_service_name,
        secret_name=settings.effective_secret_name,
        run_as_user=settings.run_as_user,
        container_port=container_port,
        service_port=service_port,
        insecure=tls.insecure,
        ca_bundle=tls.ca_bundle,
    )

    for registration in build_registrations(webhooks):
        data = describe_webhook(registration.webhook)
        if registration.webhook_type is WebhookType.MUTATING:
            deployment.mutating_webhooks.append(data)
        else:
            deployment.validating_webhooks.append(data)

    return deployment
