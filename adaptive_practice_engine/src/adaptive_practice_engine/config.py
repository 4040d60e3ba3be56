"""
Engine Configuration

Process-wide settings come from environment variables (a .env file is
loaded if present); per-session settings are derived from them with
optional overrides.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

QUESTION_BACKENDS = ("openai", "edge_function")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass
class SessionConfig:
    """Settings for a single practice session."""
    subject: str
    skill_area: str
    initial_difficulty_level: int = 1
    total_questions: int = 5
    # None → use each question's estimated time
    per_question_timeout_seconds: Optional[float] = None
    result_display_delay_ms: int = 3000
    max_generation_attempts: int = 3
    generation_timeout_seconds: float = 30.0
    min_difficulty_level: int = 1
    max_difficulty_level: int = 5
    recent_history_limit: int = 50
    duplicate_prefix_length: int = 15
    grade_level: Optional[int] = None
    standards_alignment: Optional[Dict[str, Any]] = None
    question_context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.subject or not self.skill_area:
            raise ValueError("subject and skill_area are required")
        if self.total_questions < 1:
            raise ValueError("total_questions must be at least 1")
        if self.min_difficulty_level > self.max_difficulty_level:
            raise ValueError("min_difficulty_level must not exceed max_difficulty_level")
        if not self.min_difficulty_level <= self.initial_difficulty_level <= self.max_difficulty_level:
            raise ValueError(
                f"initial_difficulty_level must be within "
                f"{self.min_difficulty_level}-{self.max_difficulty_level}"
            )
        if self.max_generation_attempts < 1:
            raise ValueError("max_generation_attempts must be at least 1")
        if self.per_question_timeout_seconds is not None and self.per_question_timeout_seconds <= 0:
            raise ValueError("per_question_timeout_seconds must be positive")
        if self.result_display_delay_ms < 0:
            raise ValueError("result_display_delay_ms must not be negative")


@dataclass
class EngineSettings:
    """Process-wide defaults, usually read from the environment."""
    total_questions: int = 5
    initial_difficulty_level: int = 1
    per_question_timeout_seconds: Optional[float] = None
    result_display_delay_ms: int = 3000
    max_generation_attempts: int = 3
    generation_timeout_seconds: float = 30.0
    min_difficulty_level: int = 1
    max_difficulty_level: int = 5
    recent_history_limit: int = 50
    duplicate_prefix_length: int = 15
    question_backend: str = "openai"
    openai_model: str = "gpt-4o-mini"
    edge_function_name: str = "generate-adaptive-content"
    # How long a complete or errored session stays readable over the API
    finished_retention_seconds: float = 300.0

    @classmethod
    def from_env(cls) -> "EngineSettings":
        timeout = os.getenv("PRACTICE_PER_QUESTION_TIMEOUT_SECONDS")
        backend = os.getenv("QUESTION_BACKEND", "openai").lower()
        if backend not in QUESTION_BACKENDS:
            raise ValueError(f"QUESTION_BACKEND must be one of {QUESTION_BACKENDS} (got {backend!r})")

        return cls(
            total_questions=_env_int("PRACTICE_TOTAL_QUESTIONS", 5),
            initial_difficulty_level=_env_int("PRACTICE_INITIAL_DIFFICULTY", 1),
            per_question_timeout_seconds=float(timeout) if timeout else None,
            result_display_delay_ms=_env_int("PRACTICE_RESULT_DISPLAY_DELAY_MS", 3000),
            max_generation_attempts=_env_int("PRACTICE_MAX_GENERATION_ATTEMPTS", 3),
            generation_timeout_seconds=_env_float("PRACTICE_GENERATION_TIMEOUT_SECONDS", 30.0),
            min_difficulty_level=_env_int("PRACTICE_MIN_DIFFICULTY", 1),
            max_difficulty_level=_env_int("PRACTICE_MAX_DIFFICULTY", 5),
            recent_history_limit=_env_int("PRACTICE_RECENT_HISTORY_LIMIT", 50),
            duplicate_prefix_length=_env_int("PRACTICE_DUPLICATE_PREFIX_LENGTH", 15),
            question_backend=backend,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            edge_function_name=os.getenv("QUESTION_EDGE_FUNCTION", "generate-adaptive-content"),
            finished_retention_seconds=_env_float("PRACTICE_FINISHED_RETENTION_SECONDS", 300.0),
        )

    def session_config(self, subject: str, skill_area: str, **overrides) -> SessionConfig:
        """Build a SessionConfig from these defaults; None overrides are ignored."""
        config = SessionConfig(
            subject=subject,
            skill_area=skill_area,
            initial_difficulty_level=self.initial_difficulty_level,
            total_questions=self.total_questions,
            per_question_timeout_seconds=self.per_question_timeout_seconds,
            result_display_delay_ms=self.result_display_delay_ms,
            max_generation_attempts=self.max_generation_attempts,
            generation_timeout_seconds=self.generation_timeout_seconds,
            min_difficulty_level=self.min_difficulty_level,
            max_difficulty_level=self.max_difficulty_level,
            recent_history_limit=self.recent_history_limit,
            duplicate_prefix_length=self.duplicate_prefix_length,
        )
        overrides = {key: value for key, value in overrides.items() if value is not None}
        return replace(config, **overrides) if overrides else config
