"""
Question Acquisition

Composes the primary source, the fallback generator and the uniqueness
tracker into a single "get next question" operation with bounded retries.

Algorithm:
1. Up to `max_attempts` primary fetches, each bounded by a timeout.
   A duplicate result is rejected (added to the exclusion list) and uses up
   an attempt; an error or timeout also uses up an attempt.
2. If no unique primary question arrived, exactly one fallback generation.
   A duplicate fallback gets an ordinal marker at the front of its prompt.
3. The accepted text is recorded before the question is returned.

`acquire_next()` never fails outward; the worst case is a marked fallback.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from adaptive_practice_engine.errors import GenerationFailure
from adaptive_practice_engine.fallback_generator import FallbackGenerator
from adaptive_practice_engine.primary_question_source import PrimaryQuestionSource
from adaptive_practice_engine.question_record import QuestionRecord
from adaptive_practice_engine.uniqueness_tracker import UniquenessTracker

logger = logging.getLogger(__name__)

FALLBACK_NOTICE = "Using a backup question"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _wanted(is_current: Optional[Callable[[], bool]]) -> bool:
    return is_current is None or is_current()


@dataclass
class AcquisitionContext:
    """What the next question should be about."""
    subject: str
    skill_area: str
    difficulty_level: int
    user_id: str
    grade_level: Optional[int] = None
    standards_alignment: Optional[Dict[str, Any]] = None
    question_context: Dict[str, Any] = field(default_factory=dict)

    def request_context(self) -> Dict[str, Any]:
        context = dict(self.question_context)
        if self.grade_level is not None:
            context["gradeLevel"] = self.grade_level
        if self.standards_alignment is not None:
            context["standardsAlignment"] = self.standards_alignment
        return context


class QuestionAcquisition:
    """Retrying, deduplicating question supplier for one session."""

    def __init__(
        self,
        primary_source: PrimaryQuestionSource,
        tracker: UniquenessTracker,
        fallback_generator: Optional[FallbackGenerator] = None,
        max_attempts: int = 3,
        generation_timeout_seconds: float = 30.0,
        clock_ms: Callable[[], int] = _now_ms,
        on_fallback: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize QuestionAcquisition.

        Args:
            primary_source: Single-attempt primary source (may be None to always use fallback)
            tracker: Uniqueness tracker owned by the session
            fallback_generator: Template generator (default instance if None)
            max_attempts: Primary fetches per acquisition
            generation_timeout_seconds: Bound on each primary fetch
            clock_ms: Millisecond clock used to derive fallback seeds
            on_fallback: Called with a short notice whenever a fallback is served
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.primary_source = primary_source
        self.tracker = tracker
        self.fallback_generator = fallback_generator or FallbackGenerator()
        self.max_attempts = max_attempts
        self.generation_timeout_seconds = generation_timeout_seconds
        self._clock_ms = clock_ms
        self.on_fallback = on_fallback

        # Diagnostics for the most recent acquire_next() call
        self.primary_calls = 0
        self.last_used_fallback = False
        self.fallback_count = 0

    async def acquire_next(
        self,
        context: AcquisitionContext,
        is_current: Optional[Callable[[], bool]] = None
    ) -> QuestionRecord:
        """
        Get the next unique question for the session.

        Args:
            context: Subject, skill area, difficulty and learner for this question
            is_current: Returns False once the caller no longer wants the result
                (session torn down or restarted); a stale acquisition stops
                retrying and leaves the tracker untouched

        Returns:
            A QuestionRecord whose prompt has already been recorded as seen,
            unless the acquisition went stale
        """
        self.primary_calls = 0
        self.last_used_fallback = False
        rejected: List[str] = []

        if self.primary_source is not None:
            for attempt in range(1, self.max_attempts + 1):
                candidate = await self._fetch_primary(context, rejected, attempt)
                if not _wanted(is_current):
                    logger.debug("🔇 [QuestionAcquisition] Caller went away, not recording the result")
                    return candidate or self._acquire_fallback(context, record=False)
                if candidate is None:
                    continue

                if self.tracker.is_duplicate(candidate.prompt):
                    logger.info(
                        f"🔁 [QuestionAcquisition] Attempt {attempt}/{self.max_attempts} "
                        f"returned a duplicate, retrying"
                    )
                    rejected.append(candidate.prompt)
                    continue

                self.tracker.record(candidate.prompt)
                logger.info(f"✅ [QuestionAcquisition] Unique question on attempt {attempt}/{self.max_attempts}")
                return candidate

        return self._acquire_fallback(context, record=_wanted(is_current))

    async def _fetch_primary(
        self,
        context: AcquisitionContext,
        rejected: List[str],
        attempt: int
    ) -> Optional[QuestionRecord]:
        excluded = self.tracker.exclusion_list() + rejected
        self.primary_calls += 1
        try:
            return await asyncio.wait_for(
                self.primary_source.fetch(
                    context.subject,
                    context.skill_area,
                    context.difficulty_level,
                    context.user_id,
                    excluded,
                    context.request_context(),
                ),
                timeout=self.generation_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"⏱️ [QuestionAcquisition] Attempt {attempt}/{self.max_attempts} timed out "
                f"after {self.generation_timeout_seconds}s"
            )
        except GenerationFailure as e:
            logger.warning(f"⚠️ [QuestionAcquisition] Attempt {attempt}/{self.max_attempts} failed: {e}")
        except Exception as e:
            logger.warning(
                f"⚠️ [QuestionAcquisition] Attempt {attempt}/{self.max_attempts} transport error: "
                f"{type(e).__name__}: {e}"
            )
        return None

    def _acquire_fallback(self, context: AcquisitionContext, record: bool = True) -> QuestionRecord:
        self.fallback_count += 1
        seed = self._clock_ms() + self.primary_calls + self.fallback_count
        question = self.fallback_generator.generate(
            context.subject, context.skill_area, context.difficulty_level, seed
        )
        if not record:
            return question
        question = self._disambiguate(question)

        self.tracker.record(question.prompt)
        self.last_used_fallback = True
        logger.info(
            f"🛟 [QuestionAcquisition] Serving fallback question after "
            f"{self.primary_calls} primary call(s) (seed={seed})"
        )

        if self.on_fallback is not None:
            try:
                self.on_fallback(FALLBACK_NOTICE)
            except Exception as e:
                logger.warning(f"⚠️ [QuestionAcquisition] on_fallback callback failed: {e}")

        return question

    def _disambiguate(self, question: QuestionRecord) -> QuestionRecord:
        """
        Make a duplicate fallback prompt unique with a leading ordinal marker.

        The marker goes in front so it falls inside the prefix comparison window.
        """
        if not self.tracker.is_duplicate(question.prompt):
            return question

        limit = len(self.tracker.seen_in_session) + len(self.tracker.seen_historically) + 2
        for ordinal in range(2, limit + 2):
            candidate = question.with_prompt(f"(#{ordinal}) {question.prompt}")
            if not self.tracker.is_duplicate(candidate.prompt):
                logger.info(f"🔁 [QuestionAcquisition] Fallback was a duplicate, marked as #{ordinal}")
                return candidate

        return question.with_prompt(f"({question.id[:8]}) {question.prompt}")
