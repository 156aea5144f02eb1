# tests/test_http_app.py
"""HTTP routes over an engine wired to in-memory collaborators."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from dispatch_elig.transport.http_app import create_app


@pytest.fixture
def client(system, dispatches, workers, facts):
    workers.add_worker("w-a", 101, "Alice Adams")
    workers.add_worker("w-b", 102, "Bob Brown")
    facts.add("w-a", "dispstatus", "available")
    dispatches.add_job_type("jt-1", eligibility=[{"pluginId": "dispatch_status", "enabled": True}])
    dispatches.add_job("job-1")
    return TestClient(create_app(system))


class TestEligibleWorkersEndpoint:
    def test_lists_eligible_workers(self, client):
        response = client.get("/dispatch-jobs/job-1/eligible-workers")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["workers"] == [{"id": "w-a", "siriusId": 101, "displayName": "Alice Adams"}]
        assert body["appliedConditions"][0]["pluginId"] == "dispatch_status"

    def test_missing_job_is_empty_not_404(self, client):
        response = client.get("/dispatch-jobs/nope/eligible-workers")
        assert response.status_code == 200
        assert response.json() == {"workers": [], "total": 0, "appliedConditions": []}

    def test_query_filters(self, client):
        response = client.get("/dispatch-jobs/job-1/eligible-workers", params={"siriusId": 102})
        assert response.json()["total"] == 0

        response = client.get("/dispatch-jobs/job-1/eligible-workers", params={"name": "alice"})
        assert response.json()["total"] == 1

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 501}, {"offset": -1}])
    def test_pagination_bounds(self, client, params):
        response = client.get("/dispatch-jobs/job-1/eligible-workers", params=params)
        assert response.status_code == 422


class TestEligibleWorkersSqlEndpoint:
    def test_hidden_unless_component_enabled(self, client):
        response = client.get("/dispatch-jobs/job-1/eligible-workers/sql")
        assert response.status_code == 404

    def test_returns_sql_when_enabled(self, client, components):
        components.set_enabled("dispatch.eligsql", True)

        response = client.get("/dispatch-jobs/job-1/eligible-workers/sql", params={"limit": 5})

        assert response.status_code == 200
        body = response.json()
        assert "worker_dispatch_elig_denorm" in body["sql"]
        assert body["params"] == ["dispstatus", "available", 5, 0]
        assert body["appliedConditions"][0]["pluginId"] == "dispatch_status"

    def test_missing_job_is_404(self, client, components):
        components.set_enabled("dispatch.eligsql", True)
        response = client.get("/dispatch-jobs/nope/eligible-workers/sql")
        assert response.status_code == 404


class TestCheckEligibilityEndpoint:
    def test_eligible(self, client):
        response = client.get("/dispatch-jobs/job-1/check-eligibility/w-a")

        assert response.status_code == 200
        body = response.json()
        assert body["isEligible"] is True
        assert body["seniorityPosition"] == 1
        assert body["totalEligible"] == 1
        assert body["pluginResults"][0]["pluginName"] == "Dispatch Status"

    def test_ineligible(self, client):
        body = client.get("/dispatch-jobs/job-1/check-eligibility/w-b").json()
        assert body["isEligible"] is False
        assert body["pluginResults"][0]["passed"] is False

    def test_missing_worker(self, client):
        response = client.get("/dispatch-jobs/job-1/check-eligibility/w-missing")
        assert response.status_code == 404
        assert "error" in response.json()


class TestAdminEndpoints:
    def test_plugin_metadata_excludes_hidden(self, client):
        response = client.get("/dispatch-elig-plugins")

        assert response.status_code == 200
        ids = [p["id"] for p in response.json()]
        assert "dispatch_dnc" in ids
        assert "dispatch_accepted" not in ids
        ws = next(p for p in response.json() if p["id"] == "dispatch_ws")
        assert ws["configFields"][0]["name"] == "eligibleWorkStatuses"

    def test_recompute_worker(self, client, workers, facts):
        workers.dnc["w-b"] = ["emp-1"]

        response = client.post("/workers/w-b/dispatch-elig/recompute")

        assert response.status_code == 202
        assert response.json() == {"ok": True}
        assert facts.values("w-b", "dnc") == ["emp-1"]

    def test_health_and_request_id(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.json() == {"status": "healthy"}
        assert response.headers["X-Request-ID"] == "req-123"
