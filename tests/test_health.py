"""
Tests for health, readiness and metrics endpoints.
"""

import logging
from datetime import datetime

from sqlalchemy import text

from groupbook.logging_utils import level_for_status


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_not_ready_when_table_missing(self, app, client):
        with app.state.store.engine.begin() as conn:
            conn.execute(text("DROP TABLE transactions"))

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_request_id_header(self, client, auth_headers):
        response = client.get("/api/messages", headers=auth_headers)

        assert "x-request-id" in response.headers

    def test_caller_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "trace-42"})

        assert response.headers["x-request-id"] == "trace-42"

    def test_request_ids_are_unique(self, client):
        first = client.get("/health").headers["x-request-id"]
        second = client.get("/health").headers["x-request-id"]

        assert first != second

    def test_log_level_follows_status(self):
        assert level_for_status(200) == logging.INFO
        assert level_for_status(404) == logging.WARNING
        assert level_for_status(503) == logging.ERROR


class TestMetrics:

    def test_metrics_exposed(self, client, auth_headers):
        client.post(
            "/api/messages",
            json={"message": "hi", "sender": "alice", "group_name": "g1"},
            headers=auth_headers
        )
        client.delete("/api/messages/424242", headers=auth_headers)
        client.get("/api/transactions", headers=auth_headers)

        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.text
        assert "http_requests_total" in body
        assert "request_latency_seconds" in body
        assert 'record_operations_total{resource="messages",operation="create",result="created"}' in body
        assert 'result="not_found"' in body
        assert 'record_operations_total{resource="transactions",operation="list",result="listed"}' in body
        assert 'path="/api/messages/:id"' in body
