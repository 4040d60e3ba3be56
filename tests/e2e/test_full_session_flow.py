"""
End-to-End Tests for Full Practice Session Flow

Tests complete sessions from start to completion including:
- Primary generation failures → fallback questions → session still completes
- Difficulty adaptation across questions
- Uniqueness of every question in a session
- Timed-out questions and history persistence
"""

import pytest
import asyncio
import sys
import os
from typing import List

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_practice_engine", "src"))

from adaptive_practice_engine.config import EngineSettings
from adaptive_practice_engine.history_reporter import HistoryReporter
from adaptive_practice_engine.primary_question_source import PrimaryQuestionSource
from adaptive_practice_engine.question_acquisition import FALLBACK_NOTICE
from adaptive_practice_engine.question_record import QuestionOrigin
from adaptive_practice_engine.session_state import SessionPhase
from adaptive_practice_engine.session_state_machine import SessionStateMachine
from adaptive_practice_engine.uniqueness_tracker import UniquenessTracker


class FlakyGenerationBackend:
    """
    Generation backend speaking the real envelope format.

    Fails the first `failures` calls, then returns numbered questions whose
    correct answer is the option "right".
    """

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.requests: List[dict] = []

    async def generate(self, request):
        self.requests.append(request)
        n = len(self.requests)
        if n <= self.failures:
            return {"success": False, "error": "model overloaded"}
        return {
            "success": True,
            "generatedContent": {
                "question": f"Item {n:02d}: pick the right option for level {request['difficultyLevel']}",
                "options": ["wrong", "right", "nope", "no"],
                "correct": 1,
                "explanation": "It says right.",
                "conceptsCovered": [request["skillArea"]],
                "estimatedTime": 20,
            },
        }


async def play(machine: SessionStateMachine, choose) -> None:
    """Answer every question with choose(question) until the session completes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + 5
    while machine.phase != SessionPhase.COMPLETE:
        assert loop.time() < deadline, f"session stuck in {machine.phase.value}"
        if machine.phase == SessionPhase.AWAITING_ANSWER:
            await machine.submit_answer(choose(machine.state.current_question))
        await asyncio.sleep(0.001)


def correct_choice(question):
    return question.correct_index


class TestFullSessionFlow:
    """Complete practice sessions."""

    @pytest.fixture
    def settings(self):
        return EngineSettings(total_questions=5, result_display_delay_ms=0)

    @pytest.fixture
    def history(self):
        return HistoryReporter()

    @pytest.mark.asyncio
    async def test_primary_failures_fall_back_and_complete(self, settings, history):
        """
        Primary generation fails three times for the first question.

        Expected:
        1. First question is a fallback with the backup notice
        2. Remaining questions come from the primary source
        3. Session completes with five answers and a stored summary
        """
        backend = FlakyGenerationBackend(failures=3)
        machine = SessionStateMachine(
            settings.session_config("mathematics", "addition"),
            primary_source=PrimaryQuestionSource(backend),
            history_reporter=history,
        )

        state = await machine.start("student-1")

        assert state.current_question.origin == QuestionOrigin.FALLBACK
        assert state.notice == FALLBACK_NOTICE

        await play(machine, correct_choice)
        state = await machine.wait_until_complete(timeout=5)

        assert state.phase == SessionPhase.COMPLETE
        assert len(state.questions) == len(state.answers) == 5
        assert [q.origin for q in state.questions[1:]] == [QuestionOrigin.PRIMARY] * 4
        assert state.score == 100
        assert history.get_session_row(state.session_id)["completed"] == True

    @pytest.mark.asyncio
    async def test_difficulty_rises_after_three_correct(self, settings, history):
        """Level 2 → 3 after three correct answers; later questions are requested at 3."""
        backend = FlakyGenerationBackend()
        machine = SessionStateMachine(
            settings.session_config("mathematics", "addition", initial_difficulty_level=2),
            primary_source=PrimaryQuestionSource(backend),
            history_reporter=history,
        )

        await machine.start("student-2")
        await play(machine, correct_choice)
        state = await machine.wait_until_complete(timeout=5)

        assert state.difficulty_history[:4] == [2, 2, 2, 3]
        assert [r["difficultyLevel"] for r in backend.requests][:4] == [2, 2, 2, 3]
        assert state.difficulty_level >= 3

    @pytest.mark.asyncio
    async def test_offline_session_is_unique_throughout(self, settings, history):
        """Without any primary source, five fallback questions are all distinct."""
        machine = SessionStateMachine(
            settings.session_config("science", "biology"),
            primary_source=None,
            history_reporter=history,
        )

        await machine.start("student-3")
        await play(machine, lambda question: 0)
        state = await machine.wait_until_complete(timeout=5)

        prompts = [q.prompt for q in state.questions]
        assert all(q.origin == QuestionOrigin.FALLBACK for q in state.questions)
        checker = UniquenessTracker()
        for prompt in prompts:
            assert not checker.is_duplicate(prompt)
            checker.record(prompt)

    @pytest.mark.asyncio
    async def test_all_questions_time_out(self, history):
        """Nobody answers: every question times out and the level drops."""
        settings = EngineSettings(total_questions=3, result_display_delay_ms=0, per_question_timeout_seconds=0.02)
        machine = SessionStateMachine(
            settings.session_config("mathematics", "addition", initial_difficulty_level=2),
            primary_source=PrimaryQuestionSource(FlakyGenerationBackend()),
            history_reporter=history,
        )

        await machine.start("student-4")
        state = await machine.wait_until_complete(timeout=5)

        assert state.phase == SessionPhase.COMPLETE
        assert all(answer.timed_out for answer in state.answers)
        assert state.score == 0
        assert state.difficulty_level == 1

    @pytest.mark.asyncio
    async def test_second_session_avoids_first_sessions_questions(self, settings, history):
        """Questions answered in an earlier session are treated as already seen."""
        first = SessionStateMachine(
            settings.session_config("mathematics", "addition", total_questions=2),
            primary_source=PrimaryQuestionSource(FlakyGenerationBackend()),
            history_reporter=history,
        )
        await first.start("student-5")
        await play(first, correct_choice)
        first_state = await first.wait_until_complete(timeout=5)

        # A fresh backend starts numbering from 1 again, repeating the old prompts
        second = SessionStateMachine(
            settings.session_config("mathematics", "addition", total_questions=2),
            primary_source=PrimaryQuestionSource(FlakyGenerationBackend()),
            history_reporter=history,
        )
        await second.start("student-5")
        await play(second, correct_choice)
        second_state = await second.wait_until_complete(timeout=5)

        old = {q.prompt for q in first_state.questions}
        assert not old & {q.prompt for q in second_state.questions}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
