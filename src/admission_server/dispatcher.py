"""
Admission dispatcher.

Bridges one inbound HTTP request to exactly one registered webhook:

1. decode the body as an admission review (400 "Invalid content" otherwise),
2. resolve the webhook by path, either as an exact key or, in shared-prefix
   mode, by asking each webhook in registration order,
3. invoke the handler once, under the configured timeout,
4. wrap the response in an envelope echoing the request's apiVersion and UID.

The dispatcher keeps no per-request state beyond the immutable registration
table, so requests are handled concurrently without locking.
"""

import asyncio
import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from admission_server.constants import (
    DEFAULT_HANDLER_TIMEOUT_SECONDS,
    HANDLER_ERROR_PREFIX,
    INVALID_CONTENT_MESSAGE,
    MAX_REQUEST_BODY_BYTES,
    NOT_FOUND_MESSAGE,
    WEBHOOK_ACTION_KEY,
)
from admission_server.errors import (
    AdmissionProtocolError,
    HandlerTimeoutError,
    RegistrationError,
    WebhookHandlerError,
)
from admission_server.models.admission import AdmissionResponse, AdmissionReview
from admission_server.observability.logging import correlation_scope
from admission_server.observability.metrics import MetricsCollector, metrics_collector
from admission_server.settings import DispatchMode
from admission_server.utils.kubernetes import KUBERNETES_CONTEXT_KEY, KubernetesContext
from admission_server.webhooks.base import AdmissionWebhook
from admission_server.webhooks.registry import WebhookRegistration, build_registrations

logger = logging.getLogger(__name__)


def extract_action(request_path: str, prefix: str) -> str | None:
    """
    Match a webhook path prefix against a request path.

    The prefix must end on a path segment boundary: ``/mutate/pods`` matches
    ``/mutate/pods`` and ``/mutate/pods/inject`` but not ``/mutate/podsets``.

    Returns:
        The remaining suffix (the action, possibly empty), or None when the
        prefix does not match
    """
    if prefix == "/":
        return request_path.lstrip("/")
    if request_path == prefix:
        return ""
    if request_path.startswith(prefix + "/"):
        return request_path[len(prefix) + 1 :]
    return None


class AdmissionDispatcher:
    """Routes admission reviews to registered webhooks."""

    def __init__(
        self,
        webhooks: Iterable[AdmissionWebhook],
        mode: DispatchMode | str = DispatchMode.EXACT,
        handler_timeout: float | None = DEFAULT_HANDLER_TIMEOUT_SECONDS,
        kubernetes: KubernetesContext | None = None,
        metrics: MetricsCollector | None = None,
        max_body_size: int = MAX_REQUEST_BODY_BYTES,
    ):
        """
        Initialize the dispatcher and its aiohttp application.

        Args:
            webhooks: Webhooks to mount, in registration order
            mode: Exact path lookup or shared-prefix resolution
            handler_timeout: Seconds a handler may take (None or 0 disables)
            kubernetes: Initialized client handle exposed to handlers
            metrics: Metrics collector (defaults to the global one)
            max_body_size: Largest accepted request body in bytes; larger
                bodies are rejected as invalid content

        Raises:
            RegistrationError: If the webhooks cannot be registered
        """
        self.mode = DispatchMode(mode)
        self.handler_timeout = handler_timeout or None
        self.metrics = metrics or metrics_collector
        self.registrations = build_registrations(webhooks)
        self._by_path = self._index_paths(self.registrations)

        self.max_body_size = max_body_size
        self.app = web.Application(client_max_size=max_body_size)
        if kubernetes is not None:
            self.app[KUBERNETES_CONTEXT_KEY] = kubernetes
        self._setup_routes()

    def _index_paths(
        self, registrations: tuple[WebhookRegistration, ...]
    ) -> Mapping[str, WebhookRegistration]:
        by_path: dict[str, WebhookRegistration] = {}
        for registration in registrations:
            if registration.path in by_path and self.mode is DispatchMode.EXACT:
                raise RegistrationError(
                    f"path {registration.path} is already bound to "
                    f"'{by_path[registration.path].name}'",
                    webhook=registration.name,
                )
            by_path.setdefault(registration.path, registration)
        return MappingProxyType(by_path)

    def _setup_routes(self) -> None:
        """Every request, whatever its method, goes through the same pipeline."""
        self.app.router.add_route("*", "/{path:.*}", self.handle_request)

    async def _read_review(self, request: web.Request) -> AdmissionReview:
        try:
            body = await request.read()
        except web.HTTPRequestEntityTooLarge as e:
            raise AdmissionProtocolError(
                f"request body exceeds {self.max_body_size} bytes", cause=e
            ) from e
        return AdmissionReview.from_body(body)

    def resolve(self, path: str) -> Iterator[tuple[WebhookRegistration, str]]:
        """
        Yield candidate webhooks for a request path with their action token.

        In exact mode there is at most one candidate. In shared-prefix mode
        candidates come in registration order.
        """
        if self.mode is DispatchMode.EXACT:
            registration = self._by_path.get(path)
            if registration is not None:
                yield registration, ""
            return

        for registration in self.registrations:
            action = extract_action(path, registration.path)
            if action is not None:
                yield registration, action

    async def handle_request(self, request: web.Request) -> web.StreamResponse:
        """Handle one admission request end to end."""
        try:
            review = await self._read_review(request)
        except AdmissionProtocolError as e:
            logger.error(
                f"Error in deserializing admission request: {e.message}",
                extra={"path": request.path, "http_status": 400},
            )
            self.metrics.record_request("-", 400)
            return web.Response(status=400, text=INVALID_CONTENT_MESSAGE)

        with correlation_scope(review.uid):
            logger.debug(
                f"Request({request.path}): Content-Type: {request.content_type}, "
                f"Content-Length: {request.content_length}",
                extra={
                    "path": request.path,
                    "api_version": review.api_version,
                    "review_uid": review.uid,
                },
            )

            for registration, action in self.resolve(request.path):
                logger.debug(
                    f"Trying to handle the request with {registration.name} "
                    f"at {registration.path}({action})",
                    extra={"webhook": registration.name, "action": action},
                )
                request[WEBHOOK_ACTION_KEY] = action

                try:
                    response = await self._invoke(registration, request, review)
                except WebhookHandlerError as e:
                    text = f"{HANDLER_ERROR_PREFIX}: {e.message}"
                    logger.error(
                        text,
                        extra={
                            "webhook": registration.name,
                            "error_type": type(e.cause or e).__name__,
                            "http_status": 400,
                        },
                    )
                    self.metrics.record_request(registration.name, 400)
                    return web.Response(status=400, text=text)

                if response is not None:
                    self._log_decision(registration, review, response)
                    self.metrics.record_request(registration.name, 200)
                    self.metrics.record_decision(registration.name, response.allowed)
                    return web.json_response(review.respond(response))

            logger.warning(
                f"No webhook accepted the request at {request.path}",
                extra={"path": request.path, "http_status": 404},
            )
            self.metrics.record_request("-", 404)
            return web.Response(status=404, text=NOT_FOUND_MESSAGE)

    async def _invoke(
        self,
        registration: WebhookRegistration,
        request: web.Request,
        review: AdmissionReview,
    ) -> AdmissionResponse | None:
        """
        Invoke a webhook handler exactly once.

        Raises:
            WebhookHandlerError: If the handler fails, times out or returns
                something that is not an admission response
        """
        webhook = registration.webhook
        deadline = asyncio.timeout(self.handler_timeout)
        try:
            async with self.metrics.track_handler(registration.name):
                async with deadline:
                    result = await webhook.handle_admission(request, review)
        except TimeoutError as e:
            # A TimeoutError raised by the handler itself is an ordinary failure
            if deadline.expired():
                raise HandlerTimeoutError(registration.name, self.handler_timeout or 0) from e
            raise WebhookHandlerError(
                registration.name, str(e) or type(e).__name__, cause=e
            ) from e
        except Exception as e:
            raise WebhookHandlerError(
                registration.name, str(e) or type(e).__name__, cause=e
            ) from e

        return self._coerce_response(registration, result)

    def _coerce_response(
        self, registration: WebhookRegistration, result: Any
    ) -> AdmissionResponse | None:
        if result is None or isinstance(result, AdmissionResponse):
            return result
        if isinstance(result, Mapping):
            try:
                return AdmissionResponse.model_validate(result)
            except ValidationError as e:
                raise WebhookHandlerError(
                    registration.name, "webhook returned an invalid admission response", cause=e
                ) from e
        raise WebhookHandlerError(
            registration.name,
            f"webhook returned unsupported type {type(result).__name__}",
        )

    def _log_decision(
        self,
        registration: WebhookRegistration,
        review: AdmissionReview,
        response: AdmissionResponse,
    ) -> None:
        request = review.request
        kind = request.kind.kind if request and request.kind else ""
        operation = request.operation if request else ""
        logger.info(
            f"{registration.name} {'allowed' if response.allowed else 'denied'} "
            f"{operation} {kind} {request.namespace or ''}/{request.name or ''}",  # type: ignore[union-attr]
            extra={
                "webhook": registration.name,
                "webhook_type": str(registration.webhook_type),
                "api_version": review.api_version,
                "review_uid": review.uid,
                "operation": operation,
                "resource_kind": kind,
                "resource_name": request.name if request else None,
                "namespace": request.namespace if request else None,
                "allowed": response.allowed,
                "http_status": 200,
            },
        )
