"""Tests for the FastAPI server."""

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_ledger, get_router
from routewise.config import default_config, parse_config
from routewise.ledger import BudgetLedger
from routewise.providers import MockProvider
from routewise.router import Router


class TestApi:
    """Test HTTP endpoints with mock providers and an in-memory ledger."""

    def setup_method(self):
        profile = parse_config(default_config()).active
        self.providers = {p.id: MockProvider(p.id, p.model_names) for p in profile.providers}
        self.ledger = BudgetLedger()
        self.router = Router(profile, self.providers, ledger=self.ledger)

        app.dependency_overrides[get_router] = lambda: self.router
        app.dependency_overrides[get_ledger] = lambda: self.ledger
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()
        self.router.close()

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_route(self):
        response = self.client.post("/route", json={"prompt": "hello"})

        assert response.status_code == 200
        body = response.json()
        assert body["provider"] == "openai"
        assert body["model"] == "gpt-4o-mini"
        assert body["rule"] == "short-question"
        assert body["reasoning"]

    def test_route_validation(self):
        assert self.client.post("/route", json={"prompt": ""}).status_code == 422
        assert self.client.post("/route", json={"prompt": "x", "mode": "turbo"}).status_code == 422

    def test_route_unavailable(self):
        for provider in self.providers.values():
            provider.available = False

        response = self.client.post("/route", json={"prompt": "hello"})

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["message"].startswith("No available route")
        assert any("provider unavailable" in line for line in detail["reasoning"])

    def test_simulate(self):
        self.providers["openai"].available = False

        response = self.client.post("/simulate", json={"prompt": "hello"})

        body = response.json()
        assert response.status_code == 200
        assert body["result"]["provider"] == "ollama"
        assert body["alternatives"][0]["skip_reason"] == "provider unavailable"

    def test_models(self):
        all_models = self.client.get("/models").json()
        local = self.client.get("/models", params={"cap": "local"}).json()

        assert [m["model"] for m in all_models] == ["gpt-4o-mini", "gpt-4o", "llama3.1:8b"]
        assert [m["model"] for m in local] == ["llama3.1:8b"]
        assert local[0]["price"] is None

    def test_transactions_and_budget(self):
        response = self.client.post(
            "/transactions",
            json={"provider": "openai", "model": "gpt-4o", "cost": 4.5, "input_tokens": 10},
        )
        assert response.status_code == 200
        assert response.json()["operation"] == "chat"

        usage = self.client.get("/budget/usage").json()
        assert usage["daily_spent"] == pytest.approx(4.5)
        assert usage["transaction_count"] == 1
        assert usage["persistent"] is False

        check = self.client.post("/budget/check", json={"estimated_cost": 1.0}).json()
        assert check["allowed"] is False

        warnings = self.client.get("/budget/warnings").json()["warnings"]
        assert warnings[0].startswith("Daily budget 90.0% used")

        stats = self.client.get("/budget/stats").json()
        assert stats["total_spent"] == pytest.approx(4.5)
        assert stats["top_models"][0]["key"] == "gpt-4o"

        export = self.client.get("/transactions").json()
        assert export["summary"]["total_transactions"] == 1

        cleanup = self.client.post("/transactions/cleanup", json={"keep_days": 30}).json()
        assert cleanup == {"removed": 0}

    def test_negative_cost_rejected(self):
        response = self.client.post(
            "/transactions",
            json={"provider": "openai", "model": "gpt-4o", "cost": -1},
        )
        assert response.status_code == 422

    def test_api_key_required(self, monkeypatch):
        monkeypatch.setenv("ROUTEWISE_API_KEY", "secret")

        assert self.client.get("/models").status_code == 401
        assert self.client.get("/models", headers={"X-API-Key": "secret"}).status_code == 200
        assert self.client.get("/health").status_code == 200
