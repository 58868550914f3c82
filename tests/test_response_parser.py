"""Tests for answer JSON extraction and validation."""

import pytest

from qa.errors import ResponseParseError, SchemaValidationError
from qa.response_parser import extract_json_text, parse_answer, repair_json
from qa.schemas import QA_PROMPT_VERSION, AnswerPayload

VALID = '{"promptVersion":"qa_answer_v1","answer":"回答","citations":[1,2],"followUps":[]}'


class TestParseAnswer:

    def test_plain_json(self):
        payload = parse_answer(VALID)

        assert payload.prompt_version == QA_PROMPT_VERSION
        assert payload.answer == "回答"
        assert payload.citations == [1, 2]
        assert payload.follow_ups == []

    def test_fenced_block(self):
        payload = parse_answer(f"```json\n{VALID}\n```")

        assert payload.citations == [1, 2]

    def test_json_surrounded_by_prose(self):
        payload = parse_answer(f"Here is the answer:\n{VALID}\nHope this helps.")

        assert payload.answer == "回答"

    def test_smart_quotes_and_trailing_comma_are_repaired(self):
        text = '{“promptVersion”: “qa_answer_v1”, “answer”: “ok”, “citations”: [3,],}'

        payload = parse_answer(text)

        assert payload.citations == [3]

    def test_smart_quotes_inside_valid_json_are_kept(self):
        text = '{"answer": "他说“你好”", "citations": ["c-1"]}'

        payload = parse_answer(text)

        assert payload.answer == "他说“你好”"
        assert payload.citations == ["c-1"]

    def test_missing_version_defaults(self):
        payload = parse_answer('{"answer": "ok", "citations": [1]}')

        assert payload.prompt_version == "qa_answer_v1"

    def test_wrong_version_and_answer_type_fail_schema_validation(self):
        with pytest.raises(SchemaValidationError) as excinfo:
            parse_answer('{"promptVersion":"wrong","answer":42}')

        message = str(excinfo.value)
        assert "schema validation" in message
        assert any("promptVersion" in issue for issue in excinfo.value.issues)
        assert any("answer" in issue for issue in excinfo.value.issues)

    @pytest.mark.parametrize("body", [
        '{"answer": "", "citations": [1]}',
        '{"answer": "ok", "citations": []}',
        '{"answer": "ok", "citations": [1], "followUps": ["a", "b", "c", "d"]}',
        '{"answer": "ok", "citations": [1], "followUps": [""]}',
        '[1, 2, 3]',
    ])
    def test_contract_violations(self, body):
        with pytest.raises(SchemaValidationError, match="schema validation"):
            parse_answer(body)

    def test_undecodable_response(self):
        with pytest.raises(ResponseParseError, match="JSON parsing failed"):
            parse_answer("I cannot answer that.")


class TestHelpers:

    def test_extract_prefers_fenced_block(self):
        text = 'Example {"x": 1}\n```json\n{"y": 2}\n```'

        assert extract_json_text(text) == '{"y": 2}'

    def test_repair_removes_trailing_commas(self):
        assert repair_json('{"a": [1, 2,], }') == '{"a": [1, 2]}'

    def test_payload_accepts_field_names(self):
        payload = AnswerPayload(answer="ok", citations=[1], follow_ups=["下一步？"])

        assert payload.follow_ups == ["下一步？"]
