"""
Session State Data Model

Defines the SessionState, PerformanceMetrics and AnswerRecord dataclasses
for a practice session.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from adaptive_practice_engine.question_record import QuestionRecord


class SessionPhase(Enum):
    """Session phases."""
    INITIALIZING = "initializing"
    LOADING_QUESTION = "loading-question"
    AWAITING_ANSWER = "awaiting-answer"
    SHOWING_RESULT = "showing-result"
    ADVANCING = "advancing"
    COMPLETE = "complete"
    ERRORED = "errored"


@dataclass(frozen=True)
class AnswerRecord:
    """One captured answer, parallel-indexed to the session's questions."""
    selected_index: int
    is_correct: bool
    response_time_ms: int
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_index": self.selected_index,
            "is_correct": self.is_correct,
            "response_time_ms": self.response_time_ms,
            "timed_out": self.timed_out,
        }


@dataclass
class PerformanceMetrics:
    """Rolling performance signals consumed by the difficulty controller."""
    total_attempts: int = 0
    correct_answers: int = 0
    consecutive_correct: int = 0
    consecutive_incorrect: int = 0
    accuracy_percent: float = 0.0
    average_response_seconds: float = 0.0

    def record(self, is_correct: bool, response_seconds: float) -> None:
        """Fold one answer into the metrics."""
        self.total_attempts += 1
        if is_correct:
            self.correct_answers += 1
            self.consecutive_correct += 1
            self.consecutive_incorrect = 0
        else:
            self.consecutive_incorrect += 1
            self.consecutive_correct = 0

        self.accuracy_percent = self.correct_answers / self.total_attempts * 100
        # Running mean
        self.average_response_seconds += (
            (response_seconds - self.average_response_seconds) / self.total_attempts
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "correct_answers": self.correct_answers,
            "consecutive_correct": self.consecutive_correct,
            "consecutive_incorrect": self.consecutive_incorrect,
            "accuracy_percent": round(self.accuracy_percent, 2),
            "average_response_seconds": round(self.average_response_seconds, 2),
        }


@dataclass
class SessionState:
    """State of one practice session, owned by a single SessionStateMachine."""
    subject: str
    skill_area: str
    total_questions: int
    difficulty_level: int = 1
    phase: SessionPhase = SessionPhase.INITIALIZING
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    questions: List[QuestionRecord] = field(default_factory=list)
    answers: List[AnswerRecord] = field(default_factory=list)
    current_index: int = 0
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    # Level used for each question, in order
    difficulty_history: List[int] = field(default_factory=list)
    # Transient learner-facing notice, e.g. when a backup question is shown
    notice: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def current_question(self) -> Optional[QuestionRecord]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def score(self) -> int:
        """Percentage of questions answered correctly, 0-100."""
        return round(self.metrics.accuracy_percent)

    @property
    def is_complete(self) -> bool:
        return self.phase == SessionPhase.COMPLETE

    def elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        if self.started_at is None:
            return 0
        end = self.completed_at or now or datetime.now()
        return max(0, int((end - self.started_at).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        current = self.current_question
        current_dict = current.to_dict() if current else None
        if current_dict and self.current_index >= len(self.answers):
            # Unanswered: keep the answer out of the snapshot
            current_dict.pop("correct_index")
            current_dict.pop("explanation")
        return {
            "session_id": self.session_id,
            "subject": self.subject,
            "skill_area": self.skill_area,
            "phase": self.phase.value,
            "difficulty_level": self.difficulty_level,
            "total_questions": self.total_questions,
            "current_index": self.current_index,
            "current_question": current_dict,
            "answers": [answer.to_dict() for answer in self.answers],
            "metrics": self.metrics.to_dict(),
            "difficulty_history": list(self.difficulty_history),
            "score": self.score,
            "notice": self.notice,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
