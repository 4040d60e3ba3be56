"""
Practice Session State Machine

Drives one timed practice session:

    initializing → loading-question → awaiting-answer → showing-result
        → advancing → (loading-question | complete)

Any phase can drop to `errored` for unrecoverable conditions (no user).

Runs on asyncio: timers are tasks that sleep and then resume the machine,
history writes are fire-and-forget tasks. Every timer captures the session
generation and question index it was scheduled for, so a timer firing after
teardown or after the question moved on is a no-op.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from adaptive_practice_engine.config import SessionConfig
from adaptive_practice_engine.difficulty_controller import DifficultyController, DifficultyDecision
from adaptive_practice_engine.errors import InvalidSessionState, PersistenceFailure, Unauthenticated
from adaptive_practice_engine.fallback_generator import FallbackGenerator
from adaptive_practice_engine.history_reporter import HistoryReporter, QuestionAnswerEvent
from adaptive_practice_engine.primary_question_source import PrimaryQuestionSource
from adaptive_practice_engine.question_acquisition import (
    AcquisitionContext,
    QuestionAcquisition,
    _now_ms,
)
from adaptive_practice_engine.question_record import QuestionRecord
from adaptive_practice_engine.session_state import AnswerRecord, SessionPhase, SessionState
from adaptive_practice_engine.uniqueness_tracker import UniquenessTracker

logger = logging.getLogger(__name__)

# Selection recorded when the per-question timer runs out: never a valid index
TIMEOUT_SELECTION = -1


class SessionStateMachine:
    """
    Owns the state of one practice session.

    Public operations: start(), submit_answer(), advance(), teardown(),
    reset(), wait_until_complete(), snapshot().
    """

    def __init__(
        self,
        config: SessionConfig,
        primary_source: Optional[PrimaryQuestionSource] = None,
        history_reporter: Optional[HistoryReporter] = None,
        fallback_generator: Optional[FallbackGenerator] = None,
        difficulty_controller: Optional[DifficultyController] = None,
        clock: Callable[[], float] = time.monotonic,
        clock_ms: Callable[[], int] = _now_ms
    ):
        """
        Initialize SessionStateMachine.

        Args:
            config: Session settings (subject, skill area, counts, timers)
            primary_source: AI-backed question source; None serves fallback questions only
            history_reporter: Persistence boundary (in-memory reporter if None)
            fallback_generator: Template generator (default instance if None)
            difficulty_controller: Difficulty rules (default instance if None)
            clock: Monotonic clock in seconds, used for response times
            clock_ms: Wall clock in milliseconds, used for fallback seeds
        """
        self.config = config
        self.primary_source = primary_source
        self.history = history_reporter or HistoryReporter()
        self.fallback_generator = fallback_generator or FallbackGenerator(
            config.min_difficulty_level, config.max_difficulty_level
        )
        self.difficulty_controller = difficulty_controller or DifficultyController(
            config.min_difficulty_level, config.max_difficulty_level
        )
        self._clock = clock
        self._clock_ms = clock_ms

        self.state = self._fresh_state()
        self.tracker: Optional[UniquenessTracker] = None
        self._tracker_user: Optional[str] = None
        self.acquisition: Optional[QuestionAcquisition] = None
        self.last_decision: Optional[DifficultyDecision] = None

        self._generation = 0
        self._question_timer: Optional[asyncio.Task] = None
        self._advance_timer: Optional[asyncio.Task] = None
        self._pending_writes: Set[asyncio.Task] = set()
        self._question_shown_at: Optional[float] = None
        self._finished = asyncio.Event()
        self._torn_down = False
        # Monotonic time the session reached complete/errored
        self.finished_at: Optional[float] = None

    # ==================== Public API ====================

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def session_id(self) -> Optional[str]:
        return self.state.session_id

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    async def start(self, user_id: Optional[str]) -> SessionState:
        """
        Start the session and load the first question.

        Args:
            user_id: Authenticated user id; a missing id puts the session in `errored`

        Returns:
            The session state (awaiting-answer on success)
        """
        if self.state.phase not in (SessionPhase.INITIALIZING, SessionPhase.ERRORED):
            raise InvalidSessionState(f"Cannot start a session in phase {self.state.phase.value}")

        await self._cancel_timers()
        self._generation += 1
        generation = self._generation
        self.state = self._fresh_state()
        self._finished.clear()
        self._torn_down = False
        self.finished_at = None

        try:
            self._require_user(user_id)
        except Unauthenticated as e:
            logger.error(f"❌ [SessionStateMachine] Cannot start session: {e}")
            self._fail(generation, "unauthenticated")
            return self.state

        self.state.user_id = user_id
        self.state.started_at = datetime.now()
        logger.info(
            f"🎯 [SessionStateMachine] Starting {self.config.subject}/{self.config.skill_area} session "
            f"for user {user_id[:20]}... ({self.config.total_questions} questions, "
            f"level {self.state.difficulty_level})"
        )

        session_id = await self._best_effort(
            "create_session",
            self.history.create_session(
                user_id, self.config.subject, self.config.skill_area, self.state.difficulty_level
            )
        )
        if not session_id:
            session_id = f"local-{uuid.uuid4()}"
            logger.warning(f"⚠️ [SessionStateMachine] Continuing with local session id {session_id}")

        recent_texts = await self._best_effort(
            "load_recent_question_texts",
            self.history.load_recent_question_texts(
                user_id, self.config.subject, self.config.skill_area, self.config.recent_history_limit
            )
        ) or []

        if generation != self._generation:
            return self.state

        self._prepare_tracker(user_id, recent_texts)
        self.state.session_id = session_id
        await self._load_question(generation)
        return self.state

    async def submit_answer(self, selected_index: int, strict: bool = False) -> Optional[AnswerRecord]:
        """
        Capture the learner's answer for the current question.

        At most one answer is kept per question: calls outside `awaiting-answer`
        or after teardown are ignored (or raise InvalidSessionState when
        `strict`). Out-of-range indices are recorded as incorrect.

        Returns:
            The recorded AnswerRecord, or None if the call was ignored
        """
        if self._torn_down:
            if strict:
                raise InvalidSessionState("Cannot submit an answer to a torn-down session")
            logger.debug("🔇 [SessionStateMachine] Ignoring answer after teardown")
            return None
        if self.state.phase != SessionPhase.AWAITING_ANSWER:
            if strict:
                raise InvalidSessionState(
                    f"Cannot submit an answer in phase {self.state.phase.value}"
                )
            logger.debug(f"🔇 [SessionStateMachine] Ignoring answer in phase {self.state.phase.value}")
            return None
        return self._capture_answer(selected_index, timed_out=False)

    async def advance(self) -> None:
        """
        Leave `showing-result` now instead of waiting for the display delay.

        Loads the next question, or completes the session after the last one.
        """
        if self._torn_down or self.state.phase != SessionPhase.SHOWING_RESULT:
            return
        if self._advance_timer is not None and self._advance_timer is not asyncio.current_task():
            self._advance_timer.cancel()
        self._advance_timer = None

        generation = self._generation
        self.state.phase = SessionPhase.ADVANCING

        if self.state.current_index + 1 < self.state.total_questions:
            self.state.current_index += 1
            await self._load_question(generation)
        else:
            self.state.current_index = self.state.total_questions
            self._complete()

    async def teardown(self) -> None:
        """
        Stop the session.

        Pending timers are cancelled, anything scheduled before this becomes a
        no-op and later answers or advances are ignored. The state is left as
        it was so it can still be read.
        """
        self._generation += 1
        self._torn_down = True
        await self._cancel_timers()
        logger.info(f"🛑 [SessionStateMachine] Session {self.state.session_id} torn down")

    async def reset(self) -> None:
        """Tear down and return to `initializing` so start() can run again."""
        await self.teardown()
        self.state = self._fresh_state()
        self._finished.clear()
        self._torn_down = False
        self.finished_at = None

    async def wait_until_complete(self, timeout: Optional[float] = None) -> SessionState:
        """Wait for `complete` (or `errored`) and for outstanding history writes."""
        await asyncio.wait_for(self._finished.wait(), timeout)
        await self.drain()
        return self.state

    async def drain(self) -> None:
        """Wait for fire-and-forget history writes to settle."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def snapshot(self) -> Dict[str, Any]:
        return self.state.to_dict()

    # ==================== Transitions ====================

    def _fresh_state(self) -> SessionState:
        return SessionState(
            subject=self.config.subject,
            skill_area=self.config.skill_area,
            total_questions=self.config.total_questions,
            difficulty_level=self.config.initial_difficulty_level,
        )

    @staticmethod
    def _require_user(user_id: Optional[str]) -> None:
        if not user_id:
            raise Unauthenticated("No authenticated user")

    def _prepare_tracker(self, user_id: str, recent_texts: List[str]) -> None:
        if self.tracker is not None and self._tracker_user == user_id:
            # Restart: same historical set, fresh session set
            self.tracker.reset()
            self.tracker.extend_history(recent_texts)
        else:
            self.tracker = UniquenessTracker(recent_texts, prefix_length=self.config.duplicate_prefix_length)
        self._tracker_user = user_id

        self.acquisition = QuestionAcquisition(
            primary_source=self.primary_source,
            tracker=self.tracker,
            fallback_generator=self.fallback_generator,
            max_attempts=self.config.max_generation_attempts,
            generation_timeout_seconds=self.config.generation_timeout_seconds,
            clock_ms=self._clock_ms,
            on_fallback=self._on_fallback,
        )

    async def _load_question(self, generation: int) -> None:
        self.state.phase = SessionPhase.LOADING_QUESTION
        self.state.notice = None
        level = self.state.difficulty_level

        context = AcquisitionContext(
            subject=self.config.subject,
            skill_area=self.config.skill_area,
            difficulty_level=level,
            user_id=self.state.user_id,
            grade_level=self.config.grade_level,
            standards_alignment=self.config.standards_alignment,
            question_context=dict(self.config.question_context),
        )
        question = await self.acquisition.acquire_next(
            context, is_current=lambda: generation == self._generation
        )

        if generation != self._generation:
            logger.debug("🔇 [SessionStateMachine] Discarding question acquired for a torn-down session")
            return

        self.state.questions.append(question)
        self.state.difficulty_history.append(level)
        self.state.phase = SessionPhase.AWAITING_ANSWER
        self._question_shown_at = self._clock()

        index = self.state.current_index
        self._question_timer = self._schedule(
            self._question_timeout_seconds(question),
            self._on_question_timeout,
            generation,
            index,
        )
        logger.info(
            f"❓ [SessionStateMachine] Question {index + 1}/{self.state.total_questions} ready "
            f"(level {level}, {question.origin.value})"
        )

    def _capture_answer(self, selected_index: int, timed_out: bool) -> Optional[AnswerRecord]:
        if self._torn_down:
            return None
        question = self.state.current_question
        if self._question_timer is not None and self._question_timer is not asyncio.current_task():
            self._question_timer.cancel()
        self._question_timer = None

        elapsed = max(0.0, self._clock() - (self._question_shown_at or self._clock()))
        answer = AnswerRecord(
            selected_index=selected_index,
            is_correct=question.is_correct(selected_index),
            response_time_ms=int(round(elapsed * 1000)),
            timed_out=timed_out,
        )
        self.state.answers.append(answer)
        self.state.metrics.record(answer.is_correct, elapsed)

        level_used = self.state.difficulty_level
        decision = self.difficulty_controller.evaluate(self.state.metrics, level_used)
        self.last_decision = decision
        if decision.changed:
            self.state.difficulty_level = decision.new_level
            logger.info(
                f"📊 [SessionStateMachine] Difficulty adjusted: {level_used} → "
                f"{decision.new_level} ({decision.reason})"
            )

        self.state.phase = SessionPhase.SHOWING_RESULT
        self._spawn_write(self._report_answer(self.state, question, answer, level_used))

        generation = self._generation
        self._advance_timer = self._schedule(
            self.config.result_display_delay_ms / 1000,
            self._on_result_shown,
            generation,
            self.state.current_index,
        )
        return answer

    def _complete(self) -> None:
        self.state.phase = SessionPhase.COMPLETE
        self.state.completed_at = datetime.now()
        self.finished_at = self._clock()
        self._finished.set()
        logger.info(
            f"🏁 [SessionStateMachine] Session {self.state.session_id} complete: "
            f"score {self.state.score}% in {self.state.elapsed_seconds()}s"
        )
        self._spawn_write(self._report_completion(self.state))

    def _fail(self, generation: int, reason: str) -> None:
        if generation != self._generation:
            return
        self.state.phase = SessionPhase.ERRORED
        self.state.error = reason
        self.finished_at = self._clock()
        self._finished.set()

    # ==================== Timers ====================

    def _question_timeout_seconds(self, question: QuestionRecord) -> float:
        if self.config.per_question_timeout_seconds is not None:
            return self.config.per_question_timeout_seconds
        return float(question.estimated_time_seconds)

    def _is_current(self, generation: int, index: int) -> bool:
        return generation == self._generation and index == self.state.current_index

    async def _on_question_timeout(self, generation: int, index: int) -> None:
        if not self._is_current(generation, index) or self.state.phase != SessionPhase.AWAITING_ANSWER:
            return
        logger.info(f"⏱️ [SessionStateMachine] Question {index + 1} timed out, recording as unanswered")
        self._capture_answer(TIMEOUT_SELECTION, timed_out=True)

    async def _on_result_shown(self, generation: int, index: int) -> None:
        if not self._is_current(generation, index) or self.state.phase != SessionPhase.SHOWING_RESULT:
            return
        await self.advance()

    def _schedule(
        self,
        delay: float,
        callback: Callable[..., Awaitable[None]],
        generation: int,
        index: int
    ) -> asyncio.Task:
        async def fire():
            await asyncio.sleep(delay)
            try:
                await callback(generation, index)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ [SessionStateMachine] Timer callback failed: {e}", exc_info=True)
                self._fail(generation, f"{type(e).__name__}: {e}")

        return asyncio.create_task(fire())

    async def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        timers = [
            timer for timer in (self._question_timer, self._advance_timer)
            if timer is not None and timer is not current
        ]
        self._question_timer = None
        self._advance_timer = None
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    def _on_fallback(self, notice: str) -> None:
        self.state.notice = notice

    # ==================== History (best effort) ====================

    def _spawn_write(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _best_effort(self, operation: str, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except PersistenceFailure as e:
            logger.warning(f"⚠️ [SessionStateMachine] {e}")
        except Exception as e:
            logger.warning(f"⚠️ [SessionStateMachine] {operation} failed: {type(e).__name__}: {e}")
        return None

    async def _report_answer(
        self,
        state: SessionState,
        question: QuestionRecord,
        answer: AnswerRecord,
        level: int
    ) -> None:
        response_seconds = int(round(answer.response_time_ms / 1000))
        event = QuestionAnswerEvent(
            user_id=state.user_id,
            subject=self.config.subject,
            skill_area=self.config.skill_area,
            difficulty_level=level,
            question_text=question.prompt,
            concepts_covered=sorted(question.concepts_covered),
            selected_index=answer.selected_index,
            correct_index=question.correct_index,
            is_correct=answer.is_correct,
            response_time_seconds=response_seconds,
            metadata={
                "session_id": state.session_id,
                "question_id": question.id,
                "origin": question.origin.value,
                "timed_out": answer.timed_out,
            },
        )
        await self._best_effort("record_question_answer", self.history.record_question_answer(event))
        await self._best_effort(
            "update_user_performance",
            self.history.update_user_performance(
                state.user_id,
                self.config.subject,
                self.config.skill_area,
                answer.is_correct,
                response_seconds,
            )
        )

    async def _report_completion(self, state: SessionState) -> None:
        await self._best_effort(
            "complete_session",
            self.history.complete_session(
                state.session_id,
                end_time=state.completed_at,
                time_spent=state.elapsed_seconds(),
                score=state.score,
            )
        )
        for question, answer in zip(state.questions, state.answers):
            for concept in sorted(question.concepts_covered):
                await self._best_effort(
                    "update_concept_mastery",
                    self.history.update_concept_mastery(
                        state.user_id, concept, self.config.subject, answer.is_correct
                    )
                )
