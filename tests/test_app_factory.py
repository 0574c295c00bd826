"""Tests for app factory and role-based routing."""

from fastapi.testclient import TestClient

from jengatrack.api.factory import create_app
from jengatrack.domain.rules import EngineConfig


class TestPublicRole:
    """Tests for APP_ROLE=public."""

    def test_health_available(self):
        app = create_app(role="public")
        client = TestClient(app)
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_internal_not_mounted(self):
        app = create_app(role="public")
        client = TestClient(app)
        response = client.get("/internal/health")
        assert response.status_code == 404

    def test_webhook_mounted(self):
        """The webhook answers (403 without a token), it is not a 404."""
        app = create_app(role="public")
        client = TestClient(app)
        response = client.post("/webhooks/whatsapp/twilio", data={})
        assert response.status_code != 404


class TestWorkerRole:
    """Tests for APP_ROLE=worker."""

    def test_health_available(self):
        app = create_app(role="worker")
        client = TestClient(app)
        response = client.get("/health")
        assert response.status_code == 200

    def test_internal_mounted(self):
        app = create_app(role="worker")
        client = TestClient(app)
        response = client.get("/internal/health")
        assert response.status_code == 200
        body = response.json()
        assert body["subsystem"] == "internal"
        assert body["pattern_version"] == EngineConfig().pattern_version
        assert body["categories"] == len(EngineConfig().category_table)

    def test_role_from_env(self, monkeypatch):
        monkeypatch.setenv("APP_ROLE", "worker")
        client = TestClient(create_app())
        assert client.get("/internal/health").status_code == 200


class TestEngineConfig:
    def test_explicit_config_wins(self):
        config = EngineConfig(product_name="BuildBook")
        app = create_app(role="public", config=config)
        assert app.state.engine_config is config

    def test_loaded_from_env(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_CURRENCY", "kes")
        app = create_app(role="public")
        assert app.state.engine_config.default_currency == "KES"


class TestCorrelationId:
    """Tests for correlation ID middleware."""

    def test_generates_correlation_id(self):
        app = create_app(role="public")
        client = TestClient(app)
        response = client.get("/health")
        assert "X-Correlation-ID" in response.headers
        # UUID format check
        cid = response.headers["X-Correlation-ID"]
        assert len(cid) == 36  # UUID length

    def test_preserves_incoming_correlation_id(self):
        app = create_app(role="public")
        client = TestClient(app)
        response = client.get("/health", headers={"X-Correlation-ID": "test-123"})
        assert response.headers["X-Correlation-ID"] == "test-123"
