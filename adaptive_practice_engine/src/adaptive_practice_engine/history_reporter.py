"""
History Reporter for Practice Persistence

Persists session rows, answered questions, concept mastery and user
performance using Supabase. Without a client, everything is kept in memory
so the engine still works in development and tests.

Every call is best-effort from the session's point of view: Supabase errors
are raised as PersistenceFailure and the session logs and ignores them.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from adaptive_practice_engine.errors import PersistenceFailure

logger = logging.getLogger(__name__)


async def _execute(query):
    # supabase-py query builders block; keep them off the event loop
    return await asyncio.to_thread(query.execute)


@dataclass
class QuestionAnswerEvent:
    """One answered question, as written to the question history."""
    user_id: str
    subject: str
    skill_area: str
    difficulty_level: int
    question_text: str
    concepts_covered: List[str]
    selected_index: int
    correct_index: int
    is_correct: bool
    response_time_seconds: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    asked_at: datetime = field(default_factory=datetime.now)

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "subject": self.subject,
            "skill_area": self.skill_area,
            "question_text": self.question_text,
            "difficulty_level": self.difficulty_level,
            "concepts_covered": list(self.concepts_covered),
            "user_answer": str(self.selected_index),
            "correct_answer": str(self.correct_index),
            "is_correct": self.is_correct,
            "response_time_seconds": self.response_time_seconds,
            "metadata": self.metadata,
            "asked_at": self.asked_at.isoformat(),
        }


class HistoryReporter:
    """
    Persistence boundary for practice sessions.

    Tables: learning_sessions, user_question_history.
    RPCs: update_concept_mastery, update_user_performance.
    """

    def __init__(self, supabase_client=None):
        """
        Initialize HistoryReporter.

        Args:
            supabase_client: Supabase client instance (optional)
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None

        # In-memory store (used when Supabase is not configured)
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._question_history: List[Dict[str, Any]] = []
        self._concept_mastery: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._user_performance: Dict[Tuple[str, str, str], Dict[str, Any]] = {}

        if not self.use_supabase:
            logger.warning("⚠️ [HistoryReporter] Supabase not available, using in-memory fallback")

    async def create_session(
        self,
        user_id: str,
        subject: str,
        skill_area: str,
        difficulty_level: int
    ) -> str:
        """
        Create a learning session row.

        Returns:
            The new session id
        """
        row = {
            "user_id": user_id,
            "subject": subject,
            "skill_area": skill_area,
            "difficulty_level": difficulty_level,
            "start_time": datetime.now().isoformat(),
            "completed": False,
        }

        if not self.use_supabase:
            session_id = str(uuid.uuid4())
            self._sessions[session_id] = {"id": session_id, **row}
            return session_id

        try:
            result = await _execute(self.supabase.table('learning_sessions').insert(row))
        except Exception as e:
            raise PersistenceFailure("create_session", e) from e

        if not result.data:
            raise PersistenceFailure("create_session: insert returned no rows")
        return result.data[0]["id"]

    async def complete_session(
        self,
        session_id: str,
        end_time: datetime,
        time_spent: int,
        score: int
    ) -> None:
        """Mark a session complete with its summary (time spent in seconds, score 0-100)."""
        update = {
            "end_time": end_time.isoformat(),
            "time_spent": time_spent,
            "score": score,
            "completed": True,
        }

        if not self.use_supabase:
            self._sessions.setdefault(session_id, {"id": session_id}).update(update)
            return

        try:
            await _execute(self.supabase.table('learning_sessions').update(update).eq('id', session_id))
        except Exception as e:
            raise PersistenceFailure("complete_session", e) from e

    async def record_question_answer(self, event: QuestionAnswerEvent) -> None:
        """Append an answered question to the user's question history."""
        row = event.to_row()

        if not self.use_supabase:
            self._question_history.append(row)
            return

        try:
            await _execute(self.supabase.table('user_question_history').insert(row))
        except Exception as e:
            raise PersistenceFailure("record_question_answer", e) from e

    async def load_recent_question_texts(
        self,
        user_id: str,
        subject: str,
        skill_area: str,
        limit: int = 50
    ) -> List[str]:
        """
        Load the most recent question texts for a user/subject/skill area.

        Returns:
            Question texts, newest first
        """
        if not self.use_supabase:
            rows = [
                row for row in self._question_history
                if row["user_id"] == user_id
                and row["subject"] == subject
                and row["skill_area"] == skill_area
            ]
            rows.sort(key=lambda row: row["asked_at"], reverse=True)
            return [row["question_text"] for row in rows[:limit]]

        try:
            query = self.supabase.table('user_question_history') \
                .select('question_text') \
                .eq('user_id', user_id) \
                .eq('subject', subject) \
                .eq('skill_area', skill_area) \
                .order('asked_at', desc=True) \
                .limit(limit)
            result = await _execute(query)
        except Exception as e:
            raise PersistenceFailure("load_recent_question_texts", e) from e

        return [row["question_text"] for row in (result.data or []) if row.get("question_text")]

    async def update_concept_mastery(
        self,
        user_id: str,
        concept_name: str,
        subject: str,
        was_correct: bool
    ) -> None:
        """Fold one attempt into the mastery record for a concept."""
        if not self.use_supabase:
            key = (user_id, subject, concept_name)
            record = self._concept_mastery.setdefault(key, {
                "user_id": user_id,
                "subject": subject,
                "concept_name": concept_name,
                "total_attempts": 0,
                "correct_attempts": 0,
                "mastery_level": 0.0,
            })
            record["total_attempts"] += 1
            if was_correct:
                record["correct_attempts"] += 1
            record["mastery_level"] = record["correct_attempts"] / record["total_attempts"]
            record["last_practice"] = datetime.now().isoformat()
            return

        try:
            await _execute(self.supabase.rpc('update_concept_mastery', {
                "p_user_id": user_id,
                "p_concept_name": concept_name,
                "p_subject": subject,
                "p_is_correct": was_correct,
            }))
        except Exception as e:
            raise PersistenceFailure("update_concept_mastery", e) from e

    async def update_user_performance(
        self,
        user_id: str,
        subject: str,
        skill_area: str,
        is_correct: bool,
        completion_time: int
    ) -> None:
        """Update the user's aggregate performance profile for a skill area."""
        if not self.use_supabase:
            key = (user_id, subject, skill_area)
            record = self._user_performance.setdefault(key, {
                "attempts": 0,
                "correct": 0,
                "total_time": 0,
            })
            record["attempts"] += 1
            record["correct"] += 1 if is_correct else 0
            record["total_time"] += completion_time
            return

        try:
            await _execute(self.supabase.rpc('update_user_performance', {
                "p_user_id": user_id,
                "p_subject": subject,
                "p_skill_area": skill_area,
                "p_is_correct": is_correct,
                "p_completion_time": completion_time,
            }))
        except Exception as e:
            raise PersistenceFailure("update_user_performance", e) from e

    def get_session_row(self, session_id: str) -> Optional[Dict[str, Any]]:
        """In-memory session row (None when backed by Supabase)."""
        return self._sessions.get(session_id)

    def get_concept_mastery(self, user_id: str, subject: str, concept_name: str) -> Optional[Dict[str, Any]]:
        """In-memory mastery record (None when backed by Supabase)."""
        return self._concept_mastery.get((user_id, subject, concept_name))
