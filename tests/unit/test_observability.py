"""Unit tests for structured logging and metrics."""

import json
import logging

import pytest
from aiohttp.test_utils import TestClient, TestServer
from prometheus_client import generate_latest

from admission_server.dispatcher import AdmissionDispatcher
from admission_server.models.admission import AdmissionResponse
from admission_server.observability.logging import (
    CorrelationIDFilter,
    StructuredFormatter,
    correlation_scope,
    get_correlation_id,
    setup_structured_logging,
)
from admission_server.observability.metrics import get_metrics_registry, metrics_collector
from admission_server.webhooks.base import validating
from tests.conftest import review_body


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("admission_server.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredLogging:
    """Tests for the JSON formatter and correlation IDs."""

    def test_formatter_emits_json_with_known_fields(self):
        record = make_record(
            "allowed CREATE Pod", webhook="no-latest-tag", http_status=200, unrelated="x"
        )
        record.correlation_id = "uid-1"

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "allowed CREATE Pod"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "uid-1"
        assert data["webhook"] == "no-latest-tag"
        assert data["http_status"] == 200
        assert "unrelated" not in data

    def test_correlation_scope_restores_previous_id(self):
        with correlation_scope("outer"):
            with correlation_scope("inner") as current:
                assert current == "inner"
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"

    def test_filter_attaches_current_id(self):
        record = make_record("hello")
        with correlation_scope("review-42"):
            CorrelationIDFilter().filter(record)
        assert record.correlation_id == "review-42"

    def test_setup_installs_single_handler(self):
        root_logger = logging.getLogger()
        saved = root_logger.handlers[:], root_logger.level
        try:
            setup_structured_logging(log_level="DEBUG")
            setup_structured_logging(log_level="WARNING")

            assert len(root_logger.handlers) == 1
            assert isinstance(root_logger.handlers[0].formatter, StructuredFormatter)
            assert root_logger.level == logging.WARNING
        finally:
            root_logger.handlers[:], level = saved
            root_logger.setLevel(level)

    @pytest.mark.asyncio
    async def test_review_uid_is_correlation_id(self):
        seen = []

        @validating("traced")
        async def traced(request, review):
            seen.append(get_correlation_id())
            return AdmissionResponse.allow()

        dispatcher = AdmissionDispatcher([traced])
        async with TestClient(TestServer(dispatcher.app)) as client:
            await client.post("/validate/traced", data=review_body(uid="trace-me"))

        assert seen == ["trace-me"]


class TestMetrics:
    """Tests for the admission metrics."""

    def test_metrics_are_registered(self):
        output = generate_latest(get_metrics_registry()).decode()

        assert "admission_webhook_requests_total" in output
        assert "admission_webhook_handler_duration_seconds" in output
        assert "admission_webhook_certificates_provisioned_total" in output

    def test_registry_is_shared(self):
        assert get_metrics_registry() is get_metrics_registry()

    @pytest.mark.asyncio
    async def test_request_and_decision_are_counted(self):
        @validating("counted")
        async def counted(request, review):
            return AdmissionResponse.deny("no")

        registry = get_metrics_registry()

        def sample(name, **labels):
            return registry.get_sample_value(name, labels) or 0.0

        before_requests = sample(
            "admission_webhook_requests_total", webhook="counted", status="200"
        )
        before_denials = sample(
            "admission_webhook_decisions_total", webhook="counted", allowed="false"
        )

        dispatcher = AdmissionDispatcher([counted], metrics=metrics_collector)
        async with TestClient(TestServer(dispatcher.app)) as client:
            await client.post("/validate/counted", data=review_body())

        assert sample(
            "admission_webhook_requests_total", webhook="counted", status="200"
        ) == before_requests + 1
        assert sample(
            "admission_webhook_decisions_total", webhook="counted", allowed="false"
        ) == before_denials + 1
        assert sample("admission_webhook_handler_duration_seconds_count", webhook="counted") >= 1
