"""
Tests for the shared-secret token check.

Tests cover:
- Every /api route rejects missing or wrong tokens (401) without writing
- Header, query and body token sources and their precedence
- Health endpoints stay open
"""

import os

import pytest

from groupbook.auth import resource_for, verify_token


TEST_SECRET_TOKEN = os.environ["SECRET_TOKEN"]

MESSAGE = {"message": "hi", "sender": "alice", "group_name": "g1"}
TRANSACTION = {"item_id": 1, "item": "bolt", "user": "bob", "amount": 5, "group_name": "g1"}

PROTECTED = [
    ("get", "/api/messages", None),
    ("post", "/api/messages", MESSAGE),
    ("delete", "/api/messages/1", None),
    ("get", "/api/transactions", None),
    ("post", "/api/transactions", TRANSACTION),
]


class TestRejection:
    """Requests without a valid token never reach the handler."""

    @pytest.mark.parametrize("method,path,body", PROTECTED)
    def test_missing_token(self, client, count_rows, method, path, body):
        kwargs = {"json": body} if body is not None else {}

        response = client.request(method.upper(), path, **kwargs)

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}
        assert count_rows("messages") == 0
        assert count_rows("transactions") == 0

    @pytest.mark.parametrize("method,path,body", PROTECTED)
    def test_wrong_token(self, client, count_rows, method, path, body):
        kwargs = {"json": body} if body is not None else {}

        response = client.request(
            method.upper(), path, headers={"Authorization": "not-the-secret"}, **kwargs
        )

        assert response.status_code == 401
        assert count_rows("messages") == 0
        assert count_rows("transactions") == 0

    def test_delete_without_token_keeps_row(self, client, auth_headers, count_rows):
        created = client.post("/api/messages", json=MESSAGE, headers=auth_headers).json()

        response = client.delete(f"/api/messages/{created['id']}")

        assert response.status_code == 401
        assert count_rows("messages") == 1

    def test_auth_checked_before_validation(self, client):
        """An unauthenticated request with a bad body is 401, not 400."""
        response = client.post("/api/messages", json={"message": "hi"})

        assert response.status_code == 401


class TestTokenSources:
    """Header, then ?token=, then body "token"."""

    def test_raw_header(self, client):
        response = client.get("/api/messages", headers={"Authorization": TEST_SECRET_TOKEN})

        assert response.status_code == 200

    def test_bearer_header(self, client):
        response = client.get(
            "/api/messages", headers={"Authorization": f"Bearer {TEST_SECRET_TOKEN}"}
        )

        assert response.status_code == 200

    def test_query_parameter(self, client):
        response = client.get("/api/messages", params={"token": TEST_SECRET_TOKEN})

        assert response.status_code == 200

    def test_body_field(self, client, count_rows):
        response = client.post("/api/messages", json={**MESSAGE, "token": TEST_SECRET_TOKEN})

        assert response.status_code == 201
        assert count_rows("messages") == 1

    def test_header_wins_over_query(self, client):
        response = client.get(
            "/api/messages",
            params={"token": TEST_SECRET_TOKEN},
            headers={"Authorization": "wrong"}
        )

        assert response.status_code == 401

    def test_query_wins_over_body(self, client, count_rows):
        response = client.post(
            "/api/messages",
            params={"token": "wrong"},
            json={**MESSAGE, "token": TEST_SECRET_TOKEN}
        )

        assert response.status_code == 401
        assert count_rows("messages") == 0

    def test_token_case_sensitive(self, client):
        response = client.get(
            "/api/messages", headers={"Authorization": TEST_SECRET_TOKEN.upper()}
        )

        assert response.status_code == 401


class TestOpenEndpoints:

    @pytest.mark.parametrize("path", ["/health", "/health/live", "/health/ready", "/metrics"])
    def test_no_token_needed(self, client, path):
        response = client.get(path)

        assert response.status_code == 200


class TestHelpers:

    def test_verify_token(self):
        assert verify_token("s3cret", "s3cret")
        assert not verify_token("s3cret ", "s3cret")
        assert not verify_token(None, "s3cret")
        assert not verify_token("", "")

    def test_resource_for(self):
        assert resource_for("/api/messages/3") == "messages"
        assert resource_for("/api/transactions") == "transactions"
        assert resource_for("/health") == "unknown"
