"""
Primary (AI-backed) Question Source

Thin adapter around the remote generation call. One attempt per `fetch()`,
no retries and no timeout of its own: the acquisition layer owns both.

A backend is any object with `async generate(request: dict) -> dict` that
returns the generation envelope:

    {"success": true, "generatedContent": {"question": ..., "options": [...],
     "correct": 0, "explanation": ..., "learningObjectives": [...],
     "estimatedTime": 30}}
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from adaptive_practice_engine.errors import GenerationFailure
from adaptive_practice_engine.question_record import (
    DEFAULT_ESTIMATED_TIME_SECONDS,
    QuestionOrigin,
    QuestionRecord,
    build_question,
)

logger = logging.getLogger(__name__)

# Most recent texts quoted back to the model as an avoid list
PROMPT_AVOID_LIMIT = 15


class GeneratedQuestionPayload(BaseModel):
    """Shape of `generatedContent` in a successful generation response."""
    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=2)
    correct_index: int = Field(validation_alias=AliasChoices("correctIndex", "correct", "correct_index"))
    explanation: Optional[str] = None
    learning_objectives: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("learningObjectives", "learning_objectives"),
    )
    estimated_time: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("estimatedTime", "estimated_time"),
    )
    concepts_covered: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("conceptsCovered", "concepts_covered"),
    )

    @field_validator("options", mode="before")
    @classmethod
    def stringify_options(cls, value):
        # Models sometimes return numeric options
        if isinstance(value, (list, tuple)):
            return [str(option) for option in value]
        return value

    @model_validator(mode="after")
    def check_correct_index(self):
        if not self.question.strip():
            raise ValueError("question text is blank")
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correct index {self.correct_index} out of range for {len(self.options)} options"
            )
        return self


def build_generation_request(
    subject: str,
    skill_area: str,
    difficulty_level: int,
    user_id: str,
    excluded_texts: Sequence[str],
    context: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Request body for the generation backend."""
    context = dict(context or {})
    request: Dict[str, Any] = {
        "subject": subject,
        "skillArea": skill_area,
        "difficultyLevel": difficulty_level,
        "userId": user_id,
        "previousQuestions": list(excluded_texts),
    }
    grade_level = context.pop("gradeLevel", None)
    standards_alignment = context.pop("standardsAlignment", None)
    if grade_level is not None:
        request["gradeLevel"] = grade_level
    if standards_alignment is not None:
        request["standardsAlignment"] = standards_alignment
    if context:
        request["questionContext"] = context
    return request


def parse_generation_response(response: Any, skill_area: str) -> QuestionRecord:
    """
    Normalize a generation envelope into a QuestionRecord.

    Raises:
        GenerationFailure: Missing `success`, a reported error, or a malformed payload
    """
    if isinstance(response, (bytes, str)):
        try:
            response = json.loads(response)
        except ValueError as e:
            raise GenerationFailure(f"Response is not valid JSON: {e}", payload=response) from e

    if not isinstance(response, dict) or not response.get("success"):
        error = response.get("error") if isinstance(response, dict) else None
        raise GenerationFailure(f"Generation failed: {error or 'no success flag'}", payload=response)

    content = response.get("generatedContent")
    if not isinstance(content, dict):
        raise GenerationFailure("No generated content in response", payload=response)

    try:
        payload = GeneratedQuestionPayload.model_validate(content)
    except ValidationError as e:
        raise GenerationFailure(f"Invalid content structure: {e.error_count()} error(s)", payload=content) from e

    estimated_time = payload.estimated_time
    if not estimated_time or estimated_time <= 0:
        estimated_time = DEFAULT_ESTIMATED_TIME_SECONDS

    return build_question(
        prompt=payload.question.strip(),
        options=payload.options,
        correct_index=payload.correct_index,
        explanation=payload.explanation or "Great work on this question!",
        learning_objectives=payload.learning_objectives,
        estimated_time_seconds=estimated_time,
        concepts_covered=payload.concepts_covered or [skill_area],
        origin=QuestionOrigin.PRIMARY,
    )


class PrimaryQuestionSource:
    """Single-attempt adapter over a generation backend."""

    def __init__(self, backend):
        """
        Initialize PrimaryQuestionSource.

        Args:
            backend: Object exposing `async generate(request) -> dict`
        """
        self.backend = backend

    async def fetch(
        self,
        subject: str,
        skill_area: str,
        difficulty_level: int,
        user_id: str,
        excluded_texts: Sequence[str],
        context: Optional[Dict[str, Any]] = None
    ) -> QuestionRecord:
        """
        Fetch one question from the backend.

        The exclusion list is advisory; callers must still check uniqueness.
        Transport exceptions propagate unchanged.
        """
        request = build_generation_request(
            subject, skill_area, difficulty_level, user_id, excluded_texts, context
        )
        response = await self.backend.generate(request)
        return parse_generation_response(response, skill_area)


def build_generation_prompt(request: Dict[str, Any]) -> str:
    """Prompt used by the OpenAI backend."""
    subject = request["subject"]
    skill_area = request["skillArea"]
    difficulty = request["difficultyLevel"]
    grade_level = request.get("gradeLevel")
    previous = request.get("previousQuestions") or []

    lines = [
        f"Generate an educational multiple-choice question for {subject} "
        f"focusing on {skill_area} at difficulty level {difficulty}/5."
    ]
    if grade_level is not None:
        lines.append(f"The learner is in grade {grade_level}; keep the wording age-appropriate.")
    if request.get("standardsAlignment"):
        lines.append(f"Align with these standards: {json.dumps(request['standardsAlignment'])}")
    if previous:
        recent = previous[-PROMPT_AVOID_LIMIT:]
        avoid = "\n".join(f"{i + 1}. {text[:100]}" for i, text in enumerate(recent))
        lines.append(f"Do NOT repeat or closely paraphrase any of these earlier questions:\n{avoid}")

    lines.append(
        "Return a JSON object with this exact structure:\n"
        "{\n"
        '  "question": "The question text",\n'
        '  "options": ["Option A", "Option B", "Option C", "Option D"],\n'
        '  "correct": 0,\n'
        '  "explanation": "Why the answer is correct",\n'
        '  "learningObjectives": ["Objective 1"],\n'
        '  "conceptsCovered": ["concept"],\n'
        '  "estimatedTime": 30\n'
        "}\n"
        "The correct field is the INDEX of the correct answer in the options array."
    )
    return "\n\n".join(lines)


class OpenAIQuestionBackend:
    """Generates questions with an OpenAI chat model in JSON mode."""

    SYSTEM_PROMPT = (
        "You are an educational content generator for children. "
        "Return ONLY valid JSON, no markdown formatting or code blocks."
    )

    def __init__(self, client, model: str = "gpt-4o-mini", temperature: float = 0.7, max_tokens: int = 800):
        """
        Args:
            client: openai.AsyncOpenAI instance
            model: Chat model name
        """
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(self, request: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": build_generation_prompt(request)},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"}
        )

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            return {"success": False, "error": "Empty response from model"}

        # Strip markdown fences some models still add
        content = content.replace("```json", "").replace("```", "").strip()
        try:
            generated = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"⚠️ [OpenAIQuestionBackend] Could not parse model output: {e}")
            return {"success": False, "error": "Failed to parse AI response"}

        return {"success": True, "generatedContent": generated}


class EdgeFunctionQuestionBackend:
    """Invokes the Supabase edge function that wraps question generation."""

    def __init__(self, supabase_client, function_name: str = "generate-adaptive-content"):
        self.supabase = supabase_client
        self.function_name = function_name

    async def generate(self, request: Dict[str, Any]) -> Dict[str, Any]:
        # supabase-py's functions client is synchronous here
        response = await asyncio.to_thread(
            self.supabase.functions.invoke,
            self.function_name,
            invoke_options={"body": request},
        )
        if isinstance(response, (bytes, str)):
            return json.loads(response)
        return response
