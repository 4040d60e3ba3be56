"""
Question Record Data Model

Defines the immutable QuestionRecord shared by every question source.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Tuple

DEFAULT_ESTIMATED_TIME_SECONDS = 30


class QuestionOrigin(Enum):
    """Where a question came from. Diagnostic only, never affects scoring."""
    PRIMARY = "primary"
    FALLBACK = "fallback"


def _new_question_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class QuestionRecord:
    """A single multiple-choice practice question."""
    prompt: str
    options: Tuple[str, ...]
    correct_index: int
    explanation: str = ""
    learning_objectives: FrozenSet[str] = frozenset()
    estimated_time_seconds: int = DEFAULT_ESTIMATED_TIME_SECONDS
    concepts_covered: FrozenSet[str] = frozenset()
    origin: QuestionOrigin = QuestionOrigin.PRIMARY
    id: str = field(default_factory=_new_question_id, compare=False)

    def __post_init__(self):
        # Coerce collection fields so callers may pass lists
        object.__setattr__(self, "options", tuple(str(option) for option in self.options))
        object.__setattr__(self, "learning_objectives", frozenset(self.learning_objectives))
        object.__setattr__(self, "concepts_covered", frozenset(self.concepts_covered))

        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValueError("QuestionRecord.prompt must be a non-empty string")
        if len(self.options) < 2:
            raise ValueError(f"QuestionRecord needs at least 2 options (got {len(self.options)})")
        if isinstance(self.correct_index, bool) or not isinstance(self.correct_index, int):
            raise ValueError("QuestionRecord.correct_index must be an integer")
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correct_index {self.correct_index} out of range for {len(self.options)} options"
            )
        if not isinstance(self.estimated_time_seconds, int) or self.estimated_time_seconds <= 0:
            raise ValueError("QuestionRecord.estimated_time_seconds must be a positive integer")

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]

    def is_correct(self, selected_index: int) -> bool:
        """Out-of-range selections are simply wrong, never an error."""
        return selected_index == self.correct_index

    def with_prompt(self, prompt: str) -> "QuestionRecord":
        """Copy with a different prompt (used to disambiguate fallback questions)."""
        return replace(self, prompt=prompt)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "options": list(self.options),
            "correct_index": self.correct_index,
            "explanation": self.explanation,
            "learning_objectives": sorted(self.learning_objectives),
            "estimated_time_seconds": self.estimated_time_seconds,
            "concepts_covered": sorted(self.concepts_covered),
            "origin": self.origin.value,
        }


def build_question(
    prompt: str,
    options: Iterable[str],
    correct_index: int,
    explanation: str = "",
    learning_objectives: Iterable[str] = (),
    estimated_time_seconds: int = DEFAULT_ESTIMATED_TIME_SECONDS,
    concepts_covered: Iterable[str] = (),
    origin: QuestionOrigin = QuestionOrigin.PRIMARY,
) -> QuestionRecord:
    return QuestionRecord(
        prompt=prompt,
        options=tuple(options),
        correct_index=correct_index,
        explanation=explanation or "",
        learning_objectives=frozenset(learning_objectives),
        estimated_time_seconds=estimated_time_seconds,
        concepts_covered=frozenset(concepts_covered),
        origin=origin,
    )
