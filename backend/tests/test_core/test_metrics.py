"""
Unit tests for Prometheus metrics helpers
"""
from snapshot_engine.core.metrics import (
    REGISTRY,
    _normalize_path,
    get_content_type,
    get_metrics,
    init_metrics,
    record_attempt,
    record_request_metrics,
    record_session_finished,
    record_session_started,
    record_upload,
)


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestNormalizePath:

    def test_replaces_uuid(self):
        path = "/api/v1/snapshots/123e4567-e89b-12d3-a456-426614174000/extract"
        assert _normalize_path(path) == "/api/v1/snapshots/{id}/extract"

    def test_replaces_numeric_ids(self):
        assert _normalize_path("/api/v1/snapshots/42") == "/api/v1/snapshots/{id}"

    def test_leaves_static_paths(self):
        assert _normalize_path("/health") == "/health"


class TestRecorders:

    def test_record_attempt_increments_counter(self):
        before = _sample("snapshot_extraction_attempts_total", outcome="black")
        record_attempt("black")
        assert _sample("snapshot_extraction_attempts_total", outcome="black") == before + 1

    def test_record_session_finished_counts_fallback_reason(self):
        before_sessions = _sample("snapshot_extraction_sessions_total", outcome="manual_fallback")
        before_reason = _sample("snapshot_extraction_manual_fallbacks_total", reason="exhausted")

        record_session_started()
        record_session_finished("manual_fallback", 1.5, "exhausted")

        assert _sample("snapshot_extraction_sessions_total", outcome="manual_fallback") == before_sessions + 1
        assert _sample("snapshot_extraction_manual_fallbacks_total", reason="exhausted") == before_reason + 1

    def test_record_upload(self):
        before = _sample("snapshot_uploads_total", origin="external_image", status="success")
        record_upload("external_image", "success")
        assert _sample("snapshot_uploads_total", origin="external_image", status="success") == before + 1

    def test_record_request_metrics_uses_normalized_path(self):
        record_request_metrics("GET", "/api/v1/snapshots/7", 200, 0.01)
        assert _sample(
            "http_requests_total", method="GET", path="/api/v1/snapshots/{id}", status_code="200"
        ) >= 1


class TestExposition:

    def test_get_metrics_includes_app_info(self):
        init_metrics(version="9.9.9")
        output = get_metrics().decode()

        assert REGISTRY.get_sample_value(
            "app_info", {"name": "snapshot-engine", "version": "9.9.9"}
        ) == 1.0
        assert "snapshot_extraction_sessions_active" in output

    def test_content_type_is_prometheus_text(self):
        assert get_content_type().startswith("text/plain")
