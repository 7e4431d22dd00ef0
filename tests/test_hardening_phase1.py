from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from types import SimpleNamespace
from uuid import UUID

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from starlette.requests import Request

from autopecas.core import startup_checks
from autopecas.core.logging_setup import JsonFormatter
from autopecas.core.request_context import bind_conversation, get_conversation_id
from autopecas.core.metrics import InMemoryRequestMetrics, request_metrics
from autopecas.deps import get_current_user, require_permission, require_role
from autopecas.middleware.observability import ObservabilityMiddleware
from autopecas.routers.internal_metrics import router as internal_metrics_router


def _build_request(path: str = "/api/resource", method: str = "GET", headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": headers or [],
        "path_params": {},
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


def test_request_id_is_returned_in_response_header(monkeypatch):
    from autopecas import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/health")
        echoed = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    UUID(response.headers["X-Request-ID"])
    assert echoed.headers["X-Request-ID"] == "req-123"


def test_cors_allows_known_origin_and_blocks_unknown_origin(monkeypatch):
    from autopecas import main
    from autopecas.core.config import CORS_ORIGINS

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    allowed_origin = CORS_ORIGINS[0]
    blocked_origin = "https://blocked-origin.example"

    with TestClient(main.app) as client:
        allowed_response = client.options(
            "/health",
            headers={"origin": allowed_origin, "access-control-request-method": "GET"},
        )
        blocked_response = client.options(
            "/health",
            headers={"origin": blocked_origin, "access-control-request-method": "GET"},
        )

    assert allowed_response.status_code == 200
    assert allowed_response.headers.get("access-control-allow-origin") == allowed_origin

    assert blocked_response.status_code == 400
    assert blocked_response.headers.get("access-control-allow-origin") is None


def test_production_environment_rejects_sqlite(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setattr(startup_checks, "DATABASE_URL", "sqlite:///./forbidden.db")

    with pytest.raises(RuntimeError, match="SQLite is forbidden"):
        startup_checks.validate_database_environment()


def test_migration_check_fails_when_pending_migration(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "pending.db"
    conn = sqlite3.connect(db_path)
    conn.execute("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)")
    conn.execute("INSERT INTO alembic_version (version_num) VALUES ('000000000000')")
    conn.commit()
    conn.close()

    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setattr(startup_checks, "DATABASE_URL", "postgresql://autopecas@db/autopecas")
    engine = create_engine(f"sqlite:///{db_path}")

    with pytest.raises(RuntimeError, match="Pending migrations"):
        startup_checks.ensure_migrations_applied(
            engine=engine,
            alembic_config_path=Path(__file__).resolve().parents[1] / "alembic.ini",
        )


def test_migration_check_accepts_current_head(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "current.db"
    conn = sqlite3.connect(db_path)
    conn.execute("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)")
    conn.execute("INSERT INTO alembic_version (version_num) VALUES ('0002_whatsapp_config')")
    conn.commit()
    conn.close()

    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setattr(startup_checks, "DATABASE_URL", "postgresql://autopecas@db/autopecas")

    startup_checks.ensure_migrations_applied(
        engine=create_engine(f"sqlite:///{db_path}"),
        alembic_config_path=Path(__file__).resolve().parents[1] / "alembic.ini",
    )


def test_401_and_403_errors_are_standardized_messages():
    request = _build_request(headers=[])

    with pytest.raises(HTTPException) as exc401:
        get_current_user(request=request, db=SimpleNamespace(query=lambda *_: None))

    assert exc401.value.status_code == 401
    assert exc401.value.detail == "Não autenticado"

    seller = SimpleNamespace(id=10, role="vendedor", permissions_json={"viewStock": True})

    with pytest.raises(HTTPException) as role_denied:
        require_role(["dev", "administrador"])(request=_build_request(), user=seller)
    with pytest.raises(HTTPException) as permission_denied:
        require_permission("editProducts")(request=_build_request(), user=seller)

    assert role_denied.value.status_code == permission_denied.value.status_code == 403
    assert role_denied.value.detail == "Permissão insuficiente"
    assert require_permission("viewStock")(request=_build_request(), user=seller) is seller


def test_internal_metrics_report_route_templates():
    request_metrics.reset()
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)
    app.include_router(internal_metrics_router)

    @app.get("/api/items/{item_id}")
    def item(item_id: int):
        return {"id": item_id}

    app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(id=1, role="dev")

    with TestClient(app) as client:
        client.get("/api/items/1")
        client.get("/api/items/2")
        client.get("/api/items/abc")
        metrics = client.get("/internal/metrics").json()

    entry = metrics["requests"]["GET /api/items/{item_id}"]
    assert entry["total_requests"] == 3
    assert entry["error_count"] == 1
    assert set(metrics["realtime"]) == {"events_sent", "events_skipped", "connections_dropped", "connections"}


def test_request_metrics_average():
    metrics = InMemoryRequestMetrics()
    metrics.observe("/api/orders", "POST", 201, 10.0)
    metrics.observe("/api/orders", "POST", 400, 30.0)

    assert metrics.snapshot()["POST /api/orders"] == {
        "total_requests": 2,
        "total_duration_ms": 40.0,
        "avg_duration_ms": 20.0,
        "error_count": 1,
    }


def test_json_formatter_masks_secrets_and_keeps_context_fields():
    record = logging.LogRecord(
        name="autopecas.ai",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="calling provider api_key=%s Authorization: Bearer %s",
        args=("sk-abcdefghijkl", "token-xyz"),
        exc_info=None,
    )
    record.conversation_id = 42

    payload = json.loads(JsonFormatter("%(message)s").format(record))

    assert payload["level"] == "WARNING"
    assert payload["module"] == "autopecas.ai"
    assert payload["conversation_id"] == 42
    assert "sk-abcdefghijkl" not in payload["message"]
    assert "token-xyz" not in payload["message"]


def test_json_formatter_masks_generic_token_and_secret():
    record = logging.LogRecord(
        name="autopecas.auth",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="invite token=%s webhook secret=%s",
        args=("abc123def", "s3cr3t-value"),
        exc_info=None,
    )

    message = json.loads(JsonFormatter("%(message)s").format(record))["message"]

    assert "abc123def" not in message
    assert "s3cr3t-value" not in message
    assert message == "invite token=*** webhook secret=***"


def test_bound_conversation_reaches_log_payload():
    record = logging.LogRecord(
        name="autopecas.services.chat",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="stored",
        args=(),
        exc_info=None,
    )
    formatter = JsonFormatter("%(message)s")

    with bind_conversation(43):
        inside = json.loads(formatter.format(record))
    outside = json.loads(formatter.format(record))

    assert inside["conversation_id"] == 43
    assert outside["conversation_id"] is None
    assert get_conversation_id() is None
