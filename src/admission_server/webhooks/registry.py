"""
Registration table binding URL paths to webhooks.

The table is built once before the listener starts and is never mutated
afterwards, which is what allows concurrent requests to read it without
locking.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from admission_server.errors import RegistrationError
from admission_server.webhooks.base import AdmissionWebhook, Initializable, WebhookType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookRegistration:
    """One mounted webhook."""

    name: str
    webhook_type: WebhookType
    path: str
    webhook: AdmissionWebhook

    @property
    def key(self) -> tuple[WebhookType, str]:
        return self.webhook_type, self.name


def register_webhook(webhook: AdmissionWebhook) -> WebhookRegistration:
    """
    Validate a webhook and build its registration.

    Raises:
        RegistrationError: If the name is unusable or the type is unknown
    """
    name = getattr(webhook, "name", "")
    if not name or not isinstance(name, str):
        raise RegistrationError("webhook has no name", webhook=repr(webhook))
    if "/" in name:
        raise RegistrationError("name must not contain '/'", webhook=name)

    try:
        webhook_type = WebhookType(getattr(webhook, "webhook_type", None))
    except ValueError as e:
        raise RegistrationError(
            f"invalid webhook type {getattr(webhook, 'webhook_type', None)!r}",
            webhook=name,
        ) from e

    path = webhook.path
    if not path.startswith("/"):
        raise RegistrationError(f"path '{path}' must start with '/'", webhook=name)

    return WebhookRegistration(
        name=name, webhook_type=webhook_type, path=path.rstrip("/") or "/", webhook=webhook
    )


def build_registrations(
    webhooks: Iterable[AdmissionWebhook],
) -> tuple[WebhookRegistration, ...]:
    """
    Build the registration table in registration order.

    Webhooks implementing ``initialize()`` are initialised here, before any
    request can reach them.

    Raises:
        RegistrationError: On an empty list, an invalid webhook, or a duplicate
            (type, name) pair
    """
    registrations: list[WebhookRegistration] = []
    seen: set[tuple[WebhookType, str]] = set()

    for webhook in webhooks:
        registration = register_webhook(webhook)
        if registration.key in seen:
            raise RegistrationError(
                f"duplicate {registration.webhook_type} webhook", webhook=registration.name
            )
        seen.add(registration.key)

        if isinstance(webhook, Initializable):
            webhook.initialize()

        logger.info(
            f"Registered {registration.webhook_type} webhook '{registration.name}' "
            f"at {registration.path}",
            extra={
                "webhook": registration.name,
                "webhook_type": str(registration.webhook_type),
                "path": registration.path,
            },
        )
        registrations.append(registration)

    if not registrations:
        raise RegistrationError("at least one webhook must be registered")

    return tuple(registrations)
