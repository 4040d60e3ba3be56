"""
Unit Tests for Primary Question Source

Tests request building, response normalization and the generation backends
(with fake OpenAI and Supabase clients, no network).
"""

import pytest
import json
import sys
import os
from types import SimpleNamespace

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_practice_engine", "src"))

from adaptive_practice_engine.errors import GenerationFailure
from adaptive_practice_engine.primary_question_source import (
    PROMPT_AVOID_LIMIT,
    EdgeFunctionQuestionBackend,
    OpenAIQuestionBackend,
    PrimaryQuestionSource,
    build_generation_prompt,
    build_generation_request,
    parse_generation_response,
)
from adaptive_practice_engine.question_record import QuestionOrigin


def envelope(**content):
    body = {
        "question": "What is 3 + 4?",
        "options": ["6", "7", "8", "9"],
        "correct": 1,
    }
    body.update(content)
    return {"success": True, "generatedContent": body}


class FakeBackend:
    """Returns a canned response and remembers requests."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.response


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAIClient:
    def __init__(self, content):
        self.chat = SimpleNamespace(completions=FakeCompletions(content))


class FakeFunctions:
    def __init__(self, result):
        self.result = result
        self.invocations = []

    def invoke(self, name, invoke_options=None):
        self.invocations.append((name, invoke_options))
        return self.result


class TestParseGenerationResponse:
    """Normalization of generation envelopes."""

    def test_valid_response_with_defaults(self):
        question = parse_generation_response(envelope(), skill_area="addition")

        assert question.prompt == "What is 3 + 4?"
        assert question.options == ("6", "7", "8", "9")
        assert question.correct_index == 1
        assert question.explanation == "Great work on this question!"
        assert question.concepts_covered == {"addition"}
        assert question.estimated_time_seconds == 30
        assert question.origin == QuestionOrigin.PRIMARY

    def test_full_payload(self):
        response = envelope(
            explanation="3 + 4 = 7",
            learningObjectives=["Add single digits"],
            conceptsCovered=["addition", "number bonds"],
            estimatedTime=45,
        )
        question = parse_generation_response(response, skill_area="ignored")

        assert question.explanation == "3 + 4 = 7"
        assert question.learning_objectives == {"Add single digits"}
        assert question.concepts_covered == {"addition", "number bonds"}
        assert question.estimated_time_seconds == 45

    def test_correct_index_alias(self):
        response = {
            "success": True,
            "generatedContent": {"question": "Pick B", "options": ["A", "B"], "correctIndex": 1},
        }

        assert parse_generation_response(response, "x").correct_index == 1

    def test_json_string_response(self):
        question = parse_generation_response(json.dumps(envelope()), "addition")

        assert question.correct_option == "7"

    def test_numeric_options_are_stringified(self):
        question = parse_generation_response(envelope(options=[6, 7, 8, 9]), "addition")

        assert question.options == ("6", "7", "8", "9")

    def test_non_positive_estimated_time_uses_default(self):
        question = parse_generation_response(envelope(estimatedTime=0), "addition")

        assert question.estimated_time_seconds == 30

    def test_reported_failure(self):
        with pytest.raises(GenerationFailure) as exc_info:
            parse_generation_response({"success": False, "error": "quota exceeded"}, "x")

        assert "quota exceeded" in str(exc_info.value)

    def test_missing_success_flag(self):
        with pytest.raises(GenerationFailure):
            parse_generation_response({"generatedContent": envelope()["generatedContent"]}, "x")

    def test_missing_content(self):
        with pytest.raises(GenerationFailure):
            parse_generation_response({"success": True}, "x")

    @pytest.mark.parametrize("content", [
        {"question": "Q?", "options": ["A", "B"], "correct": 2},
        {"question": "Q?", "options": ["A"], "correct": 0},
        {"question": "   ", "options": ["A", "B"], "correct": 0},
        {"options": ["A", "B"], "correct": 0},
        {"question": "Q?", "options": ["A", "B"]},
    ])
    def test_malformed_content(self, content):
        with pytest.raises(GenerationFailure) as exc_info:
            parse_generation_response({"success": True, "generatedContent": content}, "x")

        assert exc_info.value.payload == content

    def test_invalid_json(self):
        with pytest.raises(GenerationFailure):
            parse_generation_response("{not json", "x")


class TestGenerationRequest:
    """Request body and prompt building."""

    def test_request_fields(self):
        request = build_generation_request(
            "mathematics", "fractions", 3, "user-1", ["old question"],
            context={"gradeLevel": 4, "standardsAlignment": {"code": "4.NF.1"}, "theme": "space"},
        )

        assert request == {
            "subject": "mathematics",
            "skillArea": "fractions",
            "difficultyLevel": 3,
            "userId": "user-1",
            "previousQuestions": ["old question"],
            "gradeLevel": 4,
            "standardsAlignment": {"code": "4.NF.1"},
            "questionContext": {"theme": "space"},
        }

    def test_request_without_context(self):
        request = build_generation_request("science", "plants", 1, "u", [])

        assert "questionContext" not in request
        assert "gradeLevel" not in request

    def test_prompt_lists_recent_exclusions(self):
        previous = [f"Old question {i}" for i in range(30)]
        prompt = build_generation_prompt(build_generation_request("mathematics", "addition", 2, "u", previous))

        assert "Old question 29" in prompt
        assert "Old question 0\n" not in prompt
        assert f"{PROMPT_AVOID_LIMIT}. Old question 29" in prompt
        assert "difficulty level 2/5" in prompt


class TestPrimaryQuestionSource:
    """Single-attempt fetches through a backend."""

    @pytest.mark.asyncio
    async def test_fetch_sends_exclusions(self):
        backend = FakeBackend(response=envelope())
        source = PrimaryQuestionSource(backend)

        question = await source.fetch("mathematics", "addition", 2, "user-1", ["seen one", "seen two"])

        assert question.correct_option == "7"
        assert backend.requests[0]["previousQuestions"] == ["seen one", "seen two"]
        assert backend.requests[0]["difficultyLevel"] == 2

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        source = PrimaryQuestionSource(FakeBackend(error=ConnectionError("offline")))

        with pytest.raises(ConnectionError):
            await source.fetch("mathematics", "addition", 2, "user-1", [])

    @pytest.mark.asyncio
    async def test_generation_failure_propagates(self):
        source = PrimaryQuestionSource(FakeBackend(response={"success": False, "error": "boom"}))

        with pytest.raises(GenerationFailure):
            await source.fetch("mathematics", "addition", 2, "user-1", [])


class TestOpenAIQuestionBackend:
    """Chat-completions backend in JSON mode."""

    @pytest.mark.asyncio
    async def test_generate_strips_fences(self):
        content = "```json\n" + json.dumps(envelope()["generatedContent"]) + "\n```"
        client = FakeOpenAIClient(content)
        backend = OpenAIQuestionBackend(client, model="gpt-4o-mini")

        response = await backend.generate(build_generation_request("mathematics", "addition", 1, "u", []))

        assert response["success"] == True
        assert response["generatedContent"]["correct"] == 1
        call = client.chat.completions.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_unparseable_output(self):
        backend = OpenAIQuestionBackend(FakeOpenAIClient("Sure! Here is a question"))

        response = await backend.generate(build_generation_request("mathematics", "addition", 1, "u", []))

        assert response == {"success": False, "error": "Failed to parse AI response"}

    @pytest.mark.asyncio
    async def test_empty_output(self):
        backend = OpenAIQuestionBackend(FakeOpenAIClient(None))

        response = await backend.generate(build_generation_request("mathematics", "addition", 1, "u", []))

        assert response["success"] == False


class TestEdgeFunctionQuestionBackend:
    """Supabase edge function backend."""

    @pytest.mark.asyncio
    async def test_invoke_decodes_bytes(self):
        functions = FakeFunctions(json.dumps(envelope()).encode())
        supabase = SimpleNamespace(functions=functions)
        backend = EdgeFunctionQuestionBackend(supabase, function_name="generate-adaptive-content")
        request = build_generation_request("mathematics", "addition", 1, "u", [])

        response = await backend.generate(request)

        assert response["success"] == True
        name, options = functions.invocations[0]
        assert name == "generate-adaptive-content"
        assert options == {"body": request}

    @pytest.mark.asyncio
    async def test_dict_result_passes_through(self):
        supabase = SimpleNamespace(functions=FakeFunctions(envelope()))
        backend = EdgeFunctionQuestionBackend(supabase)

        response = await backend.generate({})

        assert response == envelope()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
