"""
Question Uniqueness Tracking

Keeps the question texts a learner has already seen in a subject/skill area
(this session plus recent history) and classifies candidates as duplicates.

Two texts are duplicates when, after case-folding and trimming, they are
equal or the first `prefix_length` characters of one are a prefix of the
other. The prefix rule is a heuristic and can flag short, similarly worded
prompts; the length is therefore a constructor argument.
"""

from typing import Iterable, Set

DEFAULT_PREFIX_LENGTH = 15


def normalize_question_text(text: str) -> str:
    """Case-fold and trim a question text."""
    return (text or "").casefold().strip()


class UniquenessTracker:
    """
    Session-local and historical record of seen question texts.

    Historical entries are supplied at construction; the tracker never talks
    to storage itself.
    """

    def __init__(
        self,
        historical_texts: Iterable[str] = (),
        prefix_length: int = DEFAULT_PREFIX_LENGTH
    ):
        if prefix_length <= 0:
            raise ValueError("prefix_length must be positive")
        self.prefix_length = prefix_length
        self._seen_in_session: Set[str] = set()
        self._seen_historically: Set[str] = {
            normalized
            for normalized in (normalize_question_text(text) for text in historical_texts)
            if normalized
        }

    @property
    def seen_in_session(self) -> Set[str]:
        return set(self._seen_in_session)

    @property
    def seen_historically(self) -> Set[str]:
        return set(self._seen_historically)

    def _matches(self, candidate: str, seen: str) -> bool:
        if candidate == seen:
            return True
        return (
            seen.startswith(candidate[:self.prefix_length])
            or candidate.startswith(seen[:self.prefix_length])
        )

    def is_duplicate(self, candidate_text: str) -> bool:
        """
        Check a candidate against everything seen so far.

        Args:
            candidate_text: Raw question text

        Returns:
            True if the text matches a session or historical entry
        """
        candidate = normalize_question_text(candidate_text)
        if not candidate:
            # An empty prompt can never be shown, treat it as already seen
            return True

        for seen in self._seen_in_session:
            if self._matches(candidate, seen):
                return True

        if any(self._matches(candidate, seen) for seen in self._seen_historically):
            # Newly discovered duplicates join the historical set for this session
            self._seen_historically.add(candidate)
            return True

        return False

    def record(self, text: str) -> None:
        """Mark a text as seen in this session. Idempotent."""
        normalized = normalize_question_text(text)
        if normalized:
            self._seen_in_session.add(normalized)

    def reset(self) -> None:
        """Forget the session set; the historical set survives."""
        self._seen_in_session.clear()

    def extend_history(self, texts: Iterable[str]) -> None:
        """Add texts loaded from storage to the historical set."""
        for text in texts:
            normalized = normalize_question_text(text)
            if normalized:
                self._seen_historically.add(normalized)

    def exclusion_list(self) -> list:
        """Texts seen in this session, for advisory exclusion by generators."""
        return sorted(self._seen_in_session)
