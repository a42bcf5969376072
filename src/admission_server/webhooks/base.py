"""
Webhook capability interfaces.

A webhook only has to provide a name, a type and a handler. Everything the
manifest generator may want to know about it (rules, configuration keys,
timeout, side effects, admission versions) is an independent optional
capability that a richer webhook opts into by implementing the method.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, TypeAlias, runtime_checkable

from aiohttp import web
from kubernetes.client import V1RuleWithOperations

from admission_server.constants import (
    MUTATE_PATH_PREFIX,
    VALIDATE_PATH_PREFIX,
    WEBHOOK_ACTION_KEY,
)
from admission_server.models.admission import AdmissionResponse, AdmissionReview

HandlerResult: TypeAlias = AdmissionResponse | dict[str, Any] | None
AdmissionHandler: TypeAlias = Callable[
    [web.Request, AdmissionReview], HandlerResult | Awaitable[HandlerResult]
]


class WebhookType(StrEnum):
    """The two admission webhook kinds."""

    MUTATING = "mutating"
    VALIDATING = "validating"

    @property
    def path_prefix(self) -> str:
        return MUTATE_PATH_PREFIX if self is WebhookType.MUTATING else VALIDATE_PATH_PREFIX


def webhook_path(webhook_type: WebhookType, name: str) -> str:
    """Default URL path of a webhook: ``/mutate/<name>`` or ``/validate/<name>``."""
    return f"{webhook_type.path_prefix}/{name}"


def get_webhook_action(request: web.Request) -> str:
    """Action token resolved by the dispatcher in shared-prefix mode ('' otherwise)."""
    return request.get(WEBHOOK_ACTION_KEY, "")


class AdmissionWebhook(ABC):
    """
    Base class for admission webhooks.

    Subclasses set ``name`` and ``webhook_type`` and implement
    ``handle_admission``. Returning ``None`` from the handler means the
    webhook declines the request; in shared-prefix mode the dispatcher then
    offers it to the next webhook.
    """

    name: str
    webhook_type: WebhookType | str

    @property
    def path(self) -> str:
        """URL path (or shared prefix) this webhook is mounted on."""
        return webhook_path(WebhookType(self.webhook_type), self.name)

    @abstractmethod
    async def handle_admission(
        self, request: web.Request, review: AdmissionReview
    ) -> HandlerResult:
        """
        Decide on an admission review.

        Args:
            request: The raw HTTP request
            review: The parsed admission review

        Returns:
            The admission response, or None to decline
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, type={self.webhook_type!s})"


class FunctionWebhook(AdmissionWebhook):
    """Adapts a plain or async function into a webhook."""

    def __init__(
        self,
        name: str,
        webhook_type: WebhookType | str,
        handler: AdmissionHandler,
        path: str | None = None,
    ):
        self.name = name
        self.webhook_type = webhook_type
        self.handler = handler
        self._path = path

    @property
    def path(self) -> str:
        return self._path or super().path

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.handler)

    async def handle_admission(
        self, request: web.Request, review: AdmissionReview
    ) -> HandlerResult:
        if self.is_async:
            return await self.handler(request, review)  # type: ignore[misc]
        # Plain functions must not block the event loop
        return await asyncio.to_thread(self.handler, request, review)  # type: ignore[arg-type]


def mutating(name: str, path: str | None = None) -> Callable[[AdmissionHandler], FunctionWebhook]:
    """Decorator turning a function into a mutating webhook."""

    def decorator(fn: AdmissionHandler) -> FunctionWebhook:
        return FunctionWebhook(name, WebhookType.MUTATING, fn, path=path)

    return decorator


def validating(name: str, path: str | None = None) -> Callable[[AdmissionHandler], FunctionWebhook]:
    """Decorator turning a function into a validating webhook."""

    def decorator(fn: AdmissionHandler) -> FunctionWebhook:
        return FunctionWebhook(name, WebhookType.VALIDATING, fn, path=path)

    return decorator


@dataclass(frozen=True)
class WebhookConfiguration:
    """A configuration key a webhook reads, reported to the manifest generator."""

    name: str
    description: str = ""
    default_value: str | None = None


# Optional capabilities


@runtime_checkable
class Initializable(Protocol):
    """Webhooks that need to prepare state before the listener starts."""

    def initialize(self) -> None: ...


@runtime_checkable
class ProvidesRules(Protocol):
    """Webhooks that report which operations on which resources they review."""

    def rules(self) -> list[V1RuleWithOperations]: ...


@runtime_checkable
class ProvidesConfigurations(Protocol):
    """Webhooks that report the configuration keys they read."""

    def configurations(self) -> list[WebhookConfiguration]: ...


@runtime_checkable
class ProvidesTimeout(Protocol):
    """Webhooks that report the timeout the API server should apply."""

    def timeout_seconds(self) -> int: ...


@runtime_checkable
class ProvidesSideEffects(Protocol):
    """Webhooks that report their side effect class."""

    def side_effects(self) -> str: ...


@runtime_checkable
class ProvidesAdmissionVersions(Protocol):
    """Webhooks that report the admission review versions they understand."""

    def admission_versions(self) -> list[str]: ...
