import json
import logging
import re

from fastapi.testclient import TestClient

from src.api.main import app
from src.api.observability import JsonFormatter, correlation_id_var, trace_id_from_traceparent


def test_health_endpoints_return_expected_status_payloads():
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
        assert client.get("/health/live").json() == {"status": "live"}
        assert client.get("/health/ready").json() == {"status": "ready"}


def test_versioned_health_endpoints_return_expected_status_payloads():
    with TestClient(app) as client:
        assert client.get("/api/v1/health").json() == {"status": "ok"}
        assert client.get("/api/v1/health/live").json() == {"status": "live"}
        assert client.get("/api/v1/health/ready").json() == {"status": "ready"}


def test_observability_headers_preserve_inbound_correlation_and_trace_id():
    with TestClient(app) as client:
        response = client.get(
            "/commitments",
            headers={
                "X-Correlation-Id": "corr-inbound-123",
                "X-Request-Id": "req-inbound-123",
                "traceparent": "00-1234567890abcdef1234567890abcdef-0000000000000001-01",
            },
        )

    assert response.status_code == 200
    assert response.headers["X-Correlation-Id"] == "corr-inbound-123"
    assert response.headers["X-Request-Id"] == "req-inbound-123"
    assert response.headers["X-Trace-Id"] == "1234567890abcdef1234567890abcdef"
    assert (
        response.headers["traceparent"] == "00-1234567890abcdef1234567890abcdef-0000000000000001-01"
    )


def test_observability_headers_generate_ids_when_missing_or_malformed():
    with TestClient(app) as client:
        response = client.get("/health", headers={"traceparent": "garbage"})

    assert re.fullmatch(r"corr_[0-9a-f]{12}", response.headers["X-Correlation-Id"])
    assert re.fullmatch(r"req_[0-9a-f]{12}", response.headers["X-Request-Id"])
    assert re.fullmatch(r"[0-9a-f]{32}", response.headers["X-Trace-Id"])


def test_trace_id_from_traceparent():
    assert trace_id_from_traceparent(None) is None
    assert trace_id_from_traceparent("00-abc-01") is None
    assert (
        trace_id_from_traceparent("00-1234567890abcdef1234567890abcdef-0000000000000001-01")
        == "1234567890abcdef1234567890abcdef"
    )


def test_metrics_endpoint_is_exposed():
    with TestClient(app) as client:
        client.get("/health")
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_request" in response.text


def test_json_formatter_merges_extra_fields_and_context():
    token = correlation_id_var.set("corr-fmt")
    try:
        record = logging.LogRecord(
            name="src.core.commitments.service",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="commitment.transition",
            args=(),
            exc_info=None,
        )
        record.extra_fields = {"commitment_id": "cm_001", "to_status": "IN_PROGRESS"}
        payload = json.loads(JsonFormatter().format(record))
    finally:
        correlation_id_var.reset(token)

    assert payload["message"] == "commitment.transition"
    assert payload["service"] == "commitment-service"
    assert payload["correlation_id"] == "corr-fmt"
    assert payload["commitment_id"] == "cm_001"
    assert "request_id" not in payload


def test_unhandled_error_is_rendered_as_problem_details(monkeypatch):
    from src.core.commitments import CommitmentWorkflowService

    def _boom(self, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(CommitmentWorkflowService, "list_commitments", _boom)
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/commitments")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["title"] == "Internal Server Error"
    assert body["instance"] == "/commitments"
