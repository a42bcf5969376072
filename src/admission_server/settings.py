"""Centralized server settings using pydantic-settings.

This module provides a single source of truth for the webhook server
configuration loaded from environment variables. Uses pydantic for automatic
validation, type coercion, and documentation.
"""

from enum import StrEnum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from admission_server.constants import (
    DEFAULT_APPLICATION_NAME,
    DEFAULT_HANDLER_TIMEOUT_SECONDS,
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    DEFAULT_NAMESPACE,
    DEFAULT_RUN_AS_USER,
    DEFAULT_SCRIPT_FOLDER,
    SECRETS_FOLDER_NAME,
)


class DispatchMode(StrEnum):
    """How the dispatcher maps request paths to webhooks."""

    EXACT = "exact"
    PREFIX = "prefix"


class Settings(BaseSettings):
    """Webhook server configuration loaded from environment variables.

    All settings have sensible defaults. Override via environment variables as
    documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Listener
    host: str = Field(
        default="0.0.0.0",
        validation_alias="WEBHOOK_HOST",
        description="Host address the webhook server listens on",
    )
    port: int = Field(
        default=0,
        ge=0,
        le=65535,
        validation_alias="WEBHOOK_PORT",
        description="Listener port (0 = 443 with TLS, 80 without)",
    )
    insecure: bool = Field(
        default=False,
        validation_alias="WEBHOOK_INSECURE",
        description="Serve plaintext HTTP and ignore all TLS inputs",
    )

    # TLS inputs
    cert_file: str = Field(
        default="",
        validation_alias="WEBHOOK_CERT_FILE",
        description="Path to an externally supplied server certificate",
    )
    key_file: str = Field(
        default="",
        validation_alias="WEBHOOK_KEY_FILE",
        description="Path to the private key of the supplied certificate",
    )
    ca_file: str = Field(
        default="",
        validation_alias="WEBHOOK_CA_FILE",
        description="Path to the CA that signed the supplied certificate",
    )
    script_folder: str = Field(
        default=DEFAULT_SCRIPT_FOLDER,
        validation_alias="WEBHOOK_SCRIPT_FOLDER",
        description="Folder that receives deployment artifacts",
    )
    secrets_dir: str = Field(
        default="",
        validation_alias="WEBHOOK_SECRETS_DIR",
        description="Folder for generated certificates (default: <script folder>/.secrets)",
    )

    # Identity
    namespace: str = Field(
        default=DEFAULT_NAMESPACE,
        validation_alias="WEBHOOK_NAMESPACE",
        description="Namespace the webhook is deployed into",
    )
    application_name: str = Field(
        default=DEFAULT_APPLICATION_NAME,
        validation_alias="WEBHOOK_APPLICATION_NAME",
        description="Name of the webhook application",
    )
    service_name: str = Field(
        default="",
        validation_alias="WEBHOOK_SERVICE_NAME",
        description="Service that fronts the webhook pods (default: application name)",
    )
    secret_name: str = Field(
        default="",
        validation_alias="WEBHOOK_SECRET_NAME",
        description="Secret holding the TLS material (default: application name)",
    )
    run_as_user: int = Field(
        default=DEFAULT_RUN_AS_USER,
        validation_alias="WEBHOOK_RUN_AS_USER",
        description="User id the container runs as",
    )

    # Dispatch
    handler_timeout_seconds: float = Field(
        default=DEFAULT_HANDLER_TIMEOUT_SECONDS,
        ge=0,
        validation_alias="WEBHOOK_HANDLER_TIMEOUT_SECONDS",
        description="Per-request handler timeout in seconds (0 disables)",
    )
    dispatch_mode: DispatchMode = Field(
        default=DispatchMode.EXACT,
        validation_alias="WEBHOOK_DISPATCH_MODE",
        description="exact: one path per webhook, prefix: shared prefix with actions",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Kubernetes client
    kubeconfig: str = Field(
        default="",
        validation_alias="KUBECONFIG",
        description="Path to kubeconfig used when not running in-cluster",
    )

    @property
    def effective_service_name(self) -> str:
        return self.service_name or self.application_name

    @property
    def effective_secret_name(self) -> str:
        return self.secret_name or self.application_name

    @property
    def effective_secrets_dir(self) -> str:
        if self.secrets_dir:
            return self.secrets_dir
        return f"{self.script_folder}/{SECRETS_FOLDER_NAME}"

    @property
    def listen_port(self) -> int:
        """Port the server binds, resolving 0 to the protocol default."""
        if self.port:
            return self.port
        return DEFAULT_HTTP_PORT if self.insecure else DEFAULT_HTTPS_PORT

    @property
    def handler_timeout(self) -> float | None:
        """Handler timeout in seconds, or None when disabled."""
        return self.handler_timeout_seconds or None
