"""
Tests for the HTTP surface: health, the agent turn endpoint and the nurse
escalation queue, with status-code mapping for engine errors.
"""

from datetime import timedelta


# ────────────────────────────── Health ──────────────────────────────


class TestHealth:
    """GET / and GET /health"""

    def test_root(self, test_client):
        resp = test_client.get("/")
        assert resp.status_code == 200
        assert "endpoints" in resp.json()

    def test_health(self, test_client):
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


# ────────────────────────────── Agent turn ──────────────────────────────


class TestAgentTurn:
    """POST /api/agent/turn"""

    def test_critical_turn(self, test_client):
        resp = test_client.post("/api/agent/turn", json={
            "patient_id": "PT-1",
            "episode_id": "EP-1",
            "message": "I have chest pain",
            "condition_code": "HF",
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["decision_hint"]["action"] == "FLAG"
        assert data["decision_hint"]["severity"] == "CRITICAL"
        assert data["interaction_status"] == "ESCALATED"
        assert data["tool_results"][0]["tool"] == "handoff_to_nurse"
        assert data["signal_source"] == "fallback"
        assert "911" in data["reply"]

    def test_unresolvable_condition_is_422(self, test_client):
        resp = test_client.post("/api/agent/turn", json={
            "patient_id": "PT-2",
            "episode_id": "EP-2",
            "message": "hello",
            "condition_code": "OTHER",
        })
        assert resp.status_code == 422
        assert "no resolvable condition" in resp.json()["detail"]

    def test_missing_fields_rejected(self, test_client):
        resp = test_client.post("/api/agent/turn", json={"patient_id": "PT-3"})
        assert resp.status_code == 422


# ────────────────────────────── Escalations ──────────────────────────────


class TestEscalations:
    """GET /api/escalations, /breached; POST assign / resolve"""

    def test_list_open_with_sla_flags(self, test_client, escalations, clock):
        task = escalations.create("EP-1", "CRITICAL", ["HF_CHEST_PAIN"])
        clock.advance(minutes=25)

        resp = test_client.get("/api/escalations")
        assert resp.status_code == 200
        data = resp.json()
        assert [t["id"] for t in data] == [task.id]
        assert data[0]["breached"] is False
        assert data[0]["sla_warning"] is True
        assert data[0]["minutes_remaining"] == 5

    def test_breached_endpoint(self, test_client, escalations, clock):
        late = escalations.create("EP-1", "CRITICAL", ["X"])
        escalations.create("EP-2", "LOW", ["Y"])
        clock.advance(minutes=45)

        resp = test_client.get("/api/escalations/breached")
        assert resp.status_code == 200
        assert [t["id"] for t in resp.json()] == [late.id]
        assert resp.json()[0]["breached"] is True

    def test_assign_and_resolve(self, test_client, escalations):
        task = escalations.create("EP-1", "HIGH", ["X"])

        resp = test_client.post(f"/api/escalations/{task.id}/assign", json={"operator_id": "nurse-1"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "IN_PROGRESS"
        assert resp.json()["assigned_to"] == "nurse-1"

        resp = test_client.post(f"/api/escalations/{task.id}/resolve", json={
            "outcome": "TELEVISIT_SCHEDULED",
            "notes": "Televisit booked for tomorrow",
            "resolver_id": "nurse-1",
        })
        assert resp.status_code == 200
        assert resp.json()["status"] == "RESOLVED"
        assert resp.json()["resolution_outcome"] == "TELEVISIT_SCHEDULED"

        resp = test_client.post(f"/api/escalations/{task.id}/resolve", json={
            "outcome": "EDUCATION_ONLY", "notes": "again", "resolver_id": "nurse-2",
        })
        assert resp.status_code == 409

    def test_invalid_outcome_is_409(self, test_client, escalations):
        task = escalations.create("EP-1", "HIGH", ["X"])
        resp = test_client.post(f"/api/escalations/{task.id}/resolve", json={
            "outcome": "CURED", "notes": "n/a", "resolver_id": "nurse-1",
        })
        assert resp.status_code == 409

    def test_unknown_task_is_404(self, test_client):
        resp = test_client.post("/api/escalations/missing/assign", json={"operator_id": "nurse-1"})
        assert resp.status_code == 404

    def test_turn_task_appears_in_queue(self, test_client, clock):
        test_client.post("/api/agent/turn", json={
            "patient_id": "PT-5",
            "episode_id": "EP-5",
            "message": "I fainted this morning",
            "condition_code": "HF",
        })
        data = test_client.get("/api/escalations").json()
        assert len(data) == 1
        assert data[0]["severity"] == "CRITICAL"
        assert data[0]["priority"] == "URGENT"
        due = data[0]["sla_due_at"]
        assert due.startswith((clock.current + timedelta(minutes=30)).isoformat()[:16])
