"""End-to-end tests for answer_question."""

import pytest

from main import process_report_chunks
from qa.errors import LLMTimeoutError
from tests.conftest import REPORT_TEXT, ScriptedLLM, answer_json


@pytest.fixture
def build(make_system):
    def _build(*script):
        llm = ScriptedLLM(*script)
        system = make_system(llm)
        process_report_chunks(system, "report-1", REPORT_TEXT)
        return system, llm

    return _build


def _used(system, tier="basic", requester="user-1"):
    return system.quota.check(requester, "report-1", tier).questions_used


def _messages(system, tier="basic", requester="user-1"):
    return system.conversations.get_or_create("report-1", requester, tier).messages


class TestAnswerQuestion:

    def test_successful_answer(self, build):
        system, _ = build(answer_json(citations=[2]))

        result = system.service.answer_question("report-1", "user-1", "basic", "我的事业发展如何？")

        assert result["ok"] is True
        assert result["answer"] == "根据报告，您的事业运势向好。"
        assert result["citations"][0]["chunk_id"] == 2
        assert set(result["citations"][0]) == {"chunk_id", "content", "section", "similarity"}
        assert 2 <= len(result["followUps"]) <= 3
        assert result["remaining_quota"] == 19

    def test_success_records_both_turns_and_one_increment(self, build):
        system, _ = build(answer_json(citations=[1]))

        system.service.answer_question("report-1", "user-1", "basic", "问题一")

        messages = _messages(system)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[0].content == "问题一"
        assert messages[1].sources[0]["chunk_id"] == 1
        assert set(messages[1].sources[0]) == {"chunk_id", "similarity"}
        assert _used(system) == 1

    def test_denied_at_limit_without_model_call(self, build):
        """Test that a requester at the limit is denied before the model runs."""
        system, llm = build(answer_json())
        for _ in range(20):
            system.quota.increment("user-1", "report-1", "basic")

        result = system.service.answer_question("report-1", "user-1", "basic", "问题")

        assert result == {
            "ok": False,
            "message": result["message"],
            "remaining_quota": 0,
            "quota_exceeded": True,
        }
        assert llm.calls == 0
        assert _used(system) == 20
        assert _messages(system) == []

    def test_free_tier_is_denied(self, build):
        system, llm = build(answer_json())

        result = system.service.answer_question("report-1", None, "free", "问题")

        assert result["quota_exceeded"] is True
        assert llm.calls == 0

    def test_timeout_then_success_increments_once(self, build, no_sleep):
        system, llm = build(LLMTimeoutError("slow"), answer_json())

        result = system.service.answer_question("report-1", "user-1", "basic", "问题")

        assert result["ok"] is True
        assert llm.calls == 2
        assert no_sleep.delays == [1.0]
        assert _used(system) == 1

    def test_persistent_timeouts_are_retryable_failures(self, build):
        system, _ = build(LLMTimeoutError("slow"))

        result = system.service.answer_question("report-1", "user-1", "basic", "问题")

        assert result["ok"] is False
        assert result["retryable"] is True
        assert _used(system) == 0
        assert _messages(system) == []

    def test_invalid_model_output_names_schema_validation(self, build):
        system, _ = build('{"promptVersion":"wrong","answer":42}')

        result = system.service.answer_question("report-1", "user-1", "basic", "问题")

        assert result["ok"] is False
        assert "schema validation" in result["message"]
        assert "retryable" not in result
        assert _used(system) == 0
        assert _messages(system) == []

    def test_unreadable_model_output(self, build):
        system, _ = build("Sorry, I can't help with that.")

        result = system.service.answer_question("report-1", "user-1", "basic", "问题")

        assert result["ok"] is False
        assert _used(system) == 0

    def test_vip_remaining_is_unlimited(self, build):
        system, _ = build(answer_json())

        result = system.service.answer_question("report-1", "user-1", "vip", "问题")

        assert result["remaining_quota"] == -1

    def test_anonymous_requester(self, build):
        system, _ = build(answer_json())

        result = system.service.answer_question("report-1", None, "basic", "问题")

        assert result["ok"] is True
        assert _used(system, requester=None) == 1

    @pytest.mark.parametrize("question", ["", "   ", None])
    def test_blank_question(self, build, question):
        system, llm = build(answer_json())

        result = system.service.answer_question("report-1", "user-1", "basic", question)

        assert result["ok"] is False
        assert llm.calls == 0

    def test_unknown_tier(self, build):
        system, llm = build(answer_json())

        result = system.service.answer_question("report-1", "user-1", "platinum", "问题")

        assert result["ok"] is False
        assert "platinum" in result["message"]
        assert llm.calls == 0

    def test_history_grows_across_questions(self, build):
        system, llm = build(answer_json())

        system.service.answer_question("report-1", "user-1", "basic", "第一个问题")
        system.service.answer_question("report-1", "user-1", "basic", "第二个问题")

        assert len(_messages(system)) == 4
        assert "User: 第一个问题" in llm.prompts[1]
        assert _used(system) == 2
