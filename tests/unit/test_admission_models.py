"""Unit tests for admission review models."""

import json

import pytest

from admission_server.errors import AdmissionProtocolError
from admission_server.models.admission import (
    AdmissionResponse,
    AdmissionReview,
    split_api_version,
)
from tests.conftest import make_review, review_body


class TestAdmissionReviewDecoding:
    """Tests for decoding inbound reviews."""

    def test_decodes_request_fields(self):
        review = AdmissionReview.from_body(review_body(uid="u-1", dryRun=True))

        assert review.uid == "u-1"
        assert review.version == "v1"
        assert review.request.kind.kind == "Pod"
        assert review.request.user_info.username == "admin"
        assert review.request.obj["metadata"]["name"] == "web-0"
        assert review.request.dry_run is True

    def test_keeps_unknown_fields(self):
        body = make_review()
        body["request"]["futureField"] = {"x": 1}

        review = AdmissionReview.from_body(json.dumps(body))

        assert review.request.model_extra["futureField"] == {"x": 1}

    def test_bare_v1beta1_is_accepted(self):
        review = AdmissionReview.from_body(review_body(api_version="v1beta1"))
        assert review.version == "v1beta1"

    @pytest.mark.parametrize(
        "body",
        [
            b"",
            b"[]",
            b'{"kind": "AdmissionReview"}',
            json.dumps(make_review(api_version="example.com/v1")).encode(),
            json.dumps({"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview"}).encode(),
            json.dumps({"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview",
                        "request": {"uid": ""}}).encode(),
        ],
    )
    def test_rejects_unusable_bodies(self, body):
        with pytest.raises(AdmissionProtocolError) as exc_info:
            AdmissionReview.from_body(body)
        assert not exc_info.value.fatal

    def test_wrong_kind_is_rejected(self):
        body = make_review()
        body["kind"] = "TokenReview"
        with pytest.raises(AdmissionProtocolError):
            AdmissionReview.from_body(json.dumps(body))

    def test_split_api_version(self):
        assert split_api_version("admission.k8s.io/v1") == ("admission.k8s.io", "v1")
        assert split_api_version("v1beta1") == ("", "v1beta1")


class TestAdmissionResponse:
    """Tests for response helpers and the response envelope."""

    def test_allow_payload(self):
        assert AdmissionResponse.allow().to_payload() == {"uid": "", "allowed": True}

    def test_deny_with_reason(self):
        payload = AdmissionResponse.deny("quota exceeded", code=429, reason="TooMany").to_payload()
        assert payload["status"] == {"code": 429, "message": "quota exceeded", "reason": "TooMany"}

    def test_patch_uses_api_field_names(self):
        response = AdmissionResponse.patched(
            [{"op": "remove", "path": "/spec/hostNetwork"}], warnings=["hostNetwork removed"]
        )
        payload = response.to_payload()

        assert payload["patchType"] == "JSONPatch"
        assert payload["warnings"] == ["hostNetwork removed"]
        assert response.patch_operations() == [{"op": "remove", "path": "/spec/hostNetwork"}]

    def test_no_patch_has_no_operations(self):
        assert AdmissionResponse.allow().patch_operations() == []

    def test_envelope_echoes_version_and_uid(self):
        review = AdmissionReview.from_body(
            review_body(uid="beta-1", api_version="admission.k8s.io/v1beta1")
        )
        envelope = review.respond(AdmissionResponse(uid="other", allowed=True))

        assert envelope == {
            "apiVersion": "admission.k8s.io/v1beta1",
            "kind": "AdmissionReview",
            "response": {"uid": "beta-1", "allowed": True},
        }

    def test_envelope_leaves_handler_response_untouched(self):
        review = AdmissionReview.from_body(review_body(uid="u-2"))
        response = AdmissionResponse.allow()

        review.respond(response)

        assert response.uid == ""
