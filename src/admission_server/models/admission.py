"""
Pydantic models for the Kubernetes AdmissionReview envelope.

The inner schema belongs to the Kubernetes admission API. These models only
pin down what the dispatcher relies on (the API version, the review UID and
the response fields it serialises) and keep everything else as-is so that
handlers see the review exactly as the API server sent it.
"""

import base64
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from admission_server.constants import (
    ADMISSION_API_GROUP,
    ADMISSION_REVIEW_KIND,
    JSON_PATCH_TYPE,
    SUPPORTED_ADMISSION_VERSIONS,
)
from admission_server.errors import AdmissionProtocolError


class GroupVersionKind(BaseModel):
    """Fully qualified kind of the object under review."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    group: str = ""
    version: str = ""
    kind: str = ""


class GroupVersionResource(BaseModel):
    """Fully qualified resource of the object under review."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    group: str = ""
    version: str = ""
    resource: str = ""


class UserInfo(BaseModel):
    """Identity of the user that issued the request."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    username: str = ""
    uid: str = ""
    groups: list[str] = Field(default_factory=list)


class AdmissionRequest(BaseModel):
    """The ``request`` part of an admission review."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    uid: str = Field(..., min_length=1, description="Opaque identifier echoed back")
    kind: GroupVersionKind | None = None
    resource: GroupVersionResource | None = None
    sub_resource: str | None = Field(None, alias="subResource")
    request_kind: GroupVersionKind | None = Field(None, alias="requestKind")
    request_resource: GroupVersionResource | None = Field(
        None, alias="requestResource"
    )
    name: str | None = None
    namespace: str | None = None
    operation: str | None = None
    user_info: UserInfo | None = Field(None, alias="userInfo")
    obj: dict[str, Any] | None = Field(None, alias="object")
    old_obj: dict[str, Any] | None = Field(None, alias="oldObject")
    options: dict[str, Any] | None = None
    dry_run: bool | None = Field(None, alias="dryRun")


class ResponseStatus(BaseModel):
    """Status attached to a denied (or annotated) admission response."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    code: int | None = None
    message: str | None = None
    reason: str | None = None


class AdmissionResponse(BaseModel):
    """The ``response`` part of an admission review."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    uid: str = ""
    allowed: bool
    status: ResponseStatus | None = None
    patch: str | None = None
    patch_type: str | None = Field(None, alias="patchType")
    warnings: list[str] | None = None
    audit_annotations: dict[str, str] | None = Field(None, alias="auditAnnotations")

    @classmethod
    def allow(cls, warnings: list[str] | None = None) -> "AdmissionResponse":
        """Admit the request unchanged."""
        return cls(allowed=True, warnings=warnings)

    @classmethod
    def deny(
        cls, message: str, code: int = 403, reason: str | None = None
    ) -> "AdmissionResponse":
        """
        Reject the request.

        Args:
            message: Explanation shown to the user by the API server
            code: HTTP-like status code reported in the response status
            reason: Optional machine readable reason

        Returns:
            A denying admission response
        """
        return cls(
            allowed=False,
            status=ResponseStatus(code=code, message=message, reason=reason),
        )

    @classmethod
    def patched(
        cls, operations: list[dict[str, Any]], warnings: list[str] | None = None
    ) -> "AdmissionResponse":
        """
        Admit the request and apply a JSON patch to the object.

        Args:
            operations: RFC 6902 JSON patch operations
            warnings: Optional warnings returned to the client

        Returns:
            An allowing admission response carrying the encoded patch
        """
        encoded = base64.b64encode(json.dumps(operations).encode("utf-8"))
        return cls(
            allowed=True,
            patch=encoded.decode("ascii"),
            patch_type=JSON_PATCH_TYPE,
            warnings=warnings,
        )

    def patch_operations(self) -> list[dict[str, Any]]:
        """Decode the JSON patch carried by this response (empty when none)."""
        if not self.patch:
            return []
        return json.loads(base64.b64decode(self.patch))

    def to_payload(self) -> dict[str, Any]:
        """Serialise with the API server's field names, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


def split_api_version(api_version: str) -> tuple[str, str]:
    """Split ``group/version`` into its parts; a bare version has no group."""
    group, _, version = api_version.rpartition("/")
    return group, version


class AdmissionReview(BaseModel):
    """
    An admission review envelope.

    The ``apiVersion`` is kept verbatim so that the response envelope echoes
    exactly what the API server sent.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    api_version: str = Field(..., alias="apiVersion")
    kind: str = ADMISSION_REVIEW_KIND
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, value: str) -> str:
        group, version = split_api_version(value)
        if group and group != ADMISSION_API_GROUP:
            raise ValueError(f"unsupported API group '{group}'")
        if version not in SUPPORTED_ADMISSION_VERSIONS:
            raise ValueError(
                f"unsupported admission version '{version}', "
                f"expected one of {', '.join(SUPPORTED_ADMISSION_VERSIONS)}"
            )
        return value

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, value: str) -> str:
        if value != ADMISSION_REVIEW_KIND:
            raise ValueError(f"expected kind {ADMISSION_REVIEW_KIND}, got '{value}'")
        return value

    @property
    def version(self) -> str:
        """The bare admission version, e.g. ``v1`` or ``v1beta1``."""
        return split_api_version(self.api_version)[1]

    @property
    def uid(self) -> str:
        return self.request.uid if self.request else ""

    @classmethod
    def from_body(cls, body: bytes | str) -> "AdmissionReview":
        """
        Decode an inbound admission review.

        Args:
            body: Raw HTTP request body

        Returns:
            The parsed review, guaranteed to carry a request

        Raises:
            AdmissionProtocolError: If the body is not a usable admission review
        """
        if not body:
            raise AdmissionProtocolError("empty request body")
        try:
            review = cls.model_validate_json(body)
        except ValidationError as e:
            raise AdmissionProtocolError(
                f"invalid admission review: {e.error_count()} validation error(s)",
                cause=e,
            ) from e
        if review.request is None:
            raise AdmissionProtocolError("admission review carries no request")
        return review

    def respond(self, response: AdmissionResponse) -> dict[str, Any]:
        """
        Build the response envelope for this review.

        The envelope echoes this review's ``apiVersion`` and copies the
        request UID into the response regardless of what the handler set.
        """
        payload = response.model_copy(update={"uid": self.uid}).to_payload()
        return {
            "apiVersion": self.api_version,
            "kind": ADMISSION_REVIEW_KIND,
            "response": payload,
        }
