"""Tests for the HTTP surface."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import api
from qa.errors import LLMTimeoutError
from qa.storage import utcnow
from tests.conftest import REPORT_TEXT, ScriptedLLM, answer_json


@pytest.fixture
def client_for(make_system, monkeypatch):
    """Create a test client around a system driven by the given LLM script."""

    def _client(*script):
        system = make_system(ScriptedLLM(*script))
        monkeypatch.setattr(api, "system", system)
        return TestClient(api.app), system

    return _client


def _ask(client, tier="basic", question="我的事业发展如何？", requester_id="user-1"):
    return client.post(
        "/qa/ask",
        json={"report_id": "report-1", "question": question, "tier": tier, "requester_id": requester_id},
    )


def test_health(client_for):
    client, _ = client_for(answer_json())

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_uninitialized_system_returns_503(monkeypatch):
    monkeypatch.setattr(api, "system", None)

    response = _ask(TestClient(api.app))

    assert response.status_code == 503


class TestReportChunks:

    def test_post_and_delete_chunks(self, client_for):
        client, system = client_for(answer_json())

        created = client.post("/reports/report-1/chunks", json={"report_text": REPORT_TEXT})
        assert created.status_code == 200
        assert created.json() == {"report_id": "report-1", "chunks": 3}

        deleted = client.delete("/reports/report-1/chunks")
        assert deleted.json() == {"report_id": "report-1", "chunks": 3}
        assert system.store.get_chunks("report-1") == []


class TestAsk:

    def test_answer(self, client_for):
        client, _ = client_for(answer_json(citations=[1]))
        client.post("/reports/report-1/chunks", json={"report_text": REPORT_TEXT})

        response = _ask(client)

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["citations"][0]["chunk_id"] == 1
        assert body["remaining_quota"] == 19
        assert len(body["followUps"]) >= 2

    def test_quota_exceeded_is_429(self, client_for):
        client, _ = client_for(answer_json())

        response = _ask(client, tier="free")

        assert response.status_code == 429
        assert response.json()["detail"]["quota_exceeded"] is True

    def test_transient_failure_is_503(self, client_for):
        client, _ = client_for(LLMTimeoutError("slow"))

        response = _ask(client)

        assert response.status_code == 503
        assert response.json()["detail"]["retryable"] is True

    def test_invalid_model_output_is_502(self, client_for):
        client, _ = client_for('{"promptVersion":"wrong","answer":42}')

        response = _ask(client)

        assert response.status_code == 502
        assert "schema validation" in response.json()["detail"]["message"]

    def test_blank_question_is_400(self, client_for):
        client, _ = client_for(answer_json())

        assert _ask(client, question="  ").status_code == 400


def test_history(client_for):
    client, _ = client_for(answer_json())
    client.post("/reports/report-1/chunks", json={"report_text": REPORT_TEXT})
    _ask(client, question="我的财运如何？")

    response = client.get("/qa/history/report-1", params={"requester_id": "user-1"})

    assert response.status_code == 200
    conversations = response.json()["conversations"]
    assert len(conversations) == 1
    assert conversations[0]["total_questions"] == 1
    assert [m["role"] for m in conversations[0]["messages"]] == ["user", "assistant"]


class TestChunkListing:

    def test_lists_chunks_in_report_order(self, client_for):
        client, _ = client_for(answer_json())
        client.post("/reports/report-1/chunks", json={"report_text": REPORT_TEXT})

        response = client.get("/reports/report-1/chunks")

        assert response.status_code == 200
        assert [c["chunk_index"] for c in response.json()["chunks"]] == [0, 1, 2]

    def test_section_filter(self, client_for):
        client, _ = client_for(answer_json())
        client.post("/reports/report-1/chunks", json={"report_text": REPORT_TEXT})

        assert len(client.get("/reports/report-1/chunks", params={"section": "general"}).json()["chunks"]) == 3
        assert client.get("/reports/report-1/chunks", params={"section": "Career"}).json()["chunks"] == []


def test_search_across_reports(client_for):
    client, system = client_for(answer_json())
    client.post("/reports/report-1/chunks", json={"report_text": REPORT_TEXT})
    client.post("/reports/report-2/chunks", json={"report_text": "乙" * 150 + "。"})

    response = client.post("/qa/search", json={"report_ids": ["report-1", "report-2"], "question": "问题"})

    assert response.status_code == 200
    results = response.json()["results"]
    assert {r["report_id"] for r in results} == {"report-1", "report-2"}
    assert system.quota.check("user-1", "report-1", "basic").questions_used == 0


def test_cleanup_removes_expired_conversations(client_for, monkeypatch):
    client, system = client_for(answer_json())
    system.conversations.get_or_create("report-1", "user-1", "free")
    later = utcnow() + timedelta(days=31)
    monkeypatch.setattr("qa.conversation.utcnow", lambda: later)

    response = client.post("/admin/conversations/cleanup")

    assert response.json() == {"deleted": 1}
