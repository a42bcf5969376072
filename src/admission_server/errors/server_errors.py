"""
Error hierarchy for the admission webhook server.

Errors are categorised by where they are contained: configuration and
transport errors are fatal to the process, protocol and handler errors are
reported to the calling API server as a rejected request and never escape it.
"""


class AdmissionServerError(Exception):
    """
    Base error class for all webhook server exceptions.

    Provides categorisation and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize server error.

        Args:
            message: Human-readable error description
            category: Error category (configuration, protocol, handler, transport)
            user_action: What the operator should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.user_action = user_action
        self.cause = cause

    @property
    def fatal(self) -> bool:
        """Whether this error must terminate the server process."""
        return self.category in ("configuration", "transport")

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ConfigurationError(AdmissionServerError):
    """Invalid startup configuration, raised before the listener opens."""

    def __init__(
        self,
        message: str,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="configuration",
            user_action=user_action or "Check the server configuration",
            cause=cause,
        )


class CertificateError(ConfigurationError):
    """TLS material is missing, unreadable or inconsistent."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        if path:
            message = f"{message} ({path})"
        self.path = path
        super().__init__(
            message=message,
            user_action=user_action
            or "Fix or remove the certificate files and provision them again",
            cause=cause,
        )


class RegistrationError(ConfigurationError):
    """A webhook could not be registered with the dispatcher."""

    def __init__(self, message: str, webhook: str | None = None):
        if webhook:
            message = f"Webhook '{webhook}': {message}"
        self.webhook = webhook
        super().__init__(
            message=message,
            user_action="Check webhook names and types for duplicates or typos",
        )


class AdmissionProtocolError(AdmissionServerError):
    """The request body is not a usable admission review."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message=message, category="protocol", cause=cause)


class WebhookHandlerError(AdmissionServerError):
    """A webhook handler failed while processing an admission request."""

    def __init__(self, webhook: str, message: str, cause: Exception | None = None):
        self.webhook = webhook
        super().__init__(message=message, category="handler", cause=cause)


class HandlerTimeoutError(WebhookHandlerError):
    """A webhook handler did not answer within the configured timeout."""

    def __init__(self, webhook: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            webhook=webhook,
            message=f"webhook '{webhook}' did not respond within {timeout:g}s",
        )


class TransportError(AdmissionServerError):
    """The listener could not bind or failed while serving."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        user_action: str | None = None,
    ):
        super().__init__(
            message=message,
            category="transport",
            user_action=user_action or "Check the listen address, port and TLS files",
            cause=cause,
        )


class ServerStateError(AdmissionServerError):
    """An illegal server lifecycle transition was requested."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            message=f"Cannot {requested} a server in state {current}",
            category="lifecycle",
            user_action="Create a new server instance",
        )
