"""
Admission webhook server - process entry point.

Usage from a webhook project::

    from admission_server import main, validating

    @validating("no-latest-tag")
    def no_latest_tag(request, review):
        ...

    if __name__ == "__main__":
        main(no_latest_tag)

Environment Variables:
    WEBHOOK_INSECURE: Set to 'true' to serve plaintext HTTP
    WEBHOOK_CERT_FILE / WEBHOOK_KEY_FILE / WEBHOOK_CA_FILE: External TLS material
    WEBHOOK_NAMESPACE / WEBHOOK_APPLICATION_NAME: Identity used in generated certificates
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import logging
import sys
from collections.abc import Iterable

from pydantic import ValidationError

from admission_server.errors import ConfigurationError, TransportError
from admission_server.observability.logging import setup_structured_logging
from admission_server.server import WebhookServer
from admission_server.settings import Settings
from admission_server.tls.provisioner import TlsAssets, provision_tls
from admission_server.utils.kubernetes import KubernetesContext
from admission_server.webhooks.base import AdmissionWebhook

logger = logging.getLogger(__name__)

EXIT_CONFIGURATION_ERROR = 2
EXIT_TRANSPORT_ERROR = 1


def configure_logging(settings: Settings) -> None:
    """Configure structured logging from the server settings."""
    setup_structured_logging(
        log_level=settings.log_level.upper(),
        enable_json_formatting=settings.json_logs,
        correlation_id_enabled=settings.correlation_ids,
    )


async def serve(
    webhooks: Iterable[AdmissionWebhook],
    settings: Settings,
    tls: TlsAssets,
    kubernetes: KubernetesContext | None = None,
) -> None:
    """
    Serve the webhooks until a termination signal.

    Raises:
        ConfigurationError: If the webhooks or the TLS chain are unusable
        TransportError: If the listener fails to bind or fails while running
    """
    server = WebhookServer.from_settings(settings, webhooks, tls, kubernetes=kubernetes)
    await server.run_until_terminated()


def run_webhooks(
    *webhooks: AdmissionWebhook,
    settings: Settings | None = None,
    kubernetes: bool = False,
) -> int:
    """
    Provision TLS and serve the given webhooks.

    Args:
        webhooks: Webhooks to mount, in registration order
        settings: Server settings (loaded from the environment when omitted)
        kubernetes: Build a Kubernetes client handle for the handlers

    Returns:
        Process exit code
    """
    try:
        settings = settings or Settings()
    except ValidationError as e:
        # Logging is not configured yet; the message still reaches stderr
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIGURATION_ERROR
    configure_logging(settings)

    context: KubernetesContext | None = None
    try:
        tls = provision_tls(settings)
        if kubernetes:
            context = KubernetesContext(settings.kubeconfig).initialize()
        asyncio.run(serve(webhooks, settings, tls, kubernetes=context))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIGURATION_ERROR
    except TransportError as e:
        logger.error(f"Webhook server failed: {e}")
        return EXIT_TRANSPORT_ERROR
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        if context is not None:
            context.close()

    return 0


def main(*webhooks: AdmissionWebhook) -> None:
    """Run the webhook server and exit with its status."""
    sys.exit(run_webhooks(*webhooks))
