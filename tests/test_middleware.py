# tests/test_middleware.py
"""Tests for the request ID, request logging and error handling middleware."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from courier_dispatch.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)


def _build_app(raise_for: set[str] | None = None, logging_enabled: bool = True):
    """Build a minimal FastAPI app with middleware for testing."""
    app = FastAPI()
    # Order matters: ErrorHandling wraps RequestID
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=logging_enabled)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test")
        assert resp.status_code == 200
        assert len(resp.headers["X-Request-ID"]) >= 32

    def test_preserves_existing_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test", headers={"X-Request-ID": "terminal-7-req-1"})
        assert resp.headers["X-Request-ID"] == "terminal-7-req-1"


class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_exception_returns_generic_500(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] == "Internal server error"
        assert "request_id" in body
        assert "boom" not in resp.text


class TestRequestLoggingMiddleware:
    LOGGER = "courier_dispatch.transport.middleware"

    def _records(self, caplog, path):
        return [r for r in caplog.records if r.name == self.LOGGER and path in r.getMessage()]

    def test_logs_request_with_request_id(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO, logger=self.LOGGER):
            client.get("/test", headers={"X-Request-ID": "req-42"})

        records = self._records(caplog, "/test")
        assert records
        assert records[0].request_id == "req-42"
        assert records[0].status_code == 200

    def test_health_is_not_logged(self, caplog):
        client = TestClient(_build_app())
        with caplog.at_level(logging.INFO):
            client.get("/health")
        assert not self._records(caplog, "/health")

    def test_disabled(self, caplog):
        client = TestClient(_build_app(logging_enabled=False))
        with caplog.at_level(logging.INFO):
            client.get("/test")
        assert not self._records(caplog, "/test")

    def test_custom_skip_paths(self, caplog):
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware, skip_paths=("/test",))

        @app.get("/test")
        def test_endpoint():
            return {"ok": True}

        with caplog.at_level(logging.INFO):
            TestClient(app).get("/test")
        assert not self._records(caplog, "/test")
