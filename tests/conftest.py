"""Shared fixtures for the admission server tests."""

import json
from typing import Any

import pytest

from admission_server.settings import Settings


def make_review(
    uid: str = "705ab4f5-6393-11e8-b7cc-42010a800002",
    api_version: str = "admission.k8s.io/v1",
    **request_fields: Any,
) -> dict[str, Any]:
    """Build an AdmissionReview payload the way the API server sends it."""
    request = {
        "uid": uid,
        "kind": {"group": "", "version": "v1", "kind": "Pod"},
        "resource": {"group": "", "version": "v1", "resource": "pods"},
        "name": "web-0",
        "namespace": "default",
        "operation": "CREATE",
        "userInfo": {"username": "admin", "groups": ["system:masters"]},
        "object": {"metadata": {"name": "web-0"}, "spec": {"containers": []}},
    }
    request.update(request_fields)
    return {"apiVersion": api_version, "kind": "AdmissionReview", "request": request}


def review_body(**kwargs: Any) -> str:
    return json.dumps(make_review(**kwargs))


@pytest.fixture
def secure_settings(tmp_path) -> Settings:
    """Settings generating certificates under a temporary folder."""
    return Settings(
        namespace="test-ns",
        application_name="test-webhook",
        script_folder=str(tmp_path / "scripts"),
    )


@pytest.fixture
def insecure_settings(tmp_path) -> Settings:
    return Settings(
        insecure=True,
        namespace="test-ns",
        application_name="test-webhook",
        script_folder=str(tmp_path / "scripts"),
    )
