"""
Unit Tests for Uniqueness Tracker

Tests duplicate detection across the session and recent history.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_practice_engine", "src"))

from adaptive_practice_engine.uniqueness_tracker import UniquenessTracker, normalize_question_text


class TestUniquenessTracker:
    """Test suite for UniquenessTracker."""

    @pytest.fixture
    def tracker(self):
        return UniquenessTracker()

    def test_exact_duplicate_ignores_case_and_whitespace(self, tracker):
        tracker.record("What is 2 + 2?")

        assert tracker.is_duplicate("  what is 2 + 2?  ") == True

    def test_shared_prefix_is_duplicate(self, tracker):
        """Texts sharing their first 15 characters count as the same question."""
        tracker.record("What is the capital of France?")

        assert tracker.is_duplicate("What is the capital of Spain?") == True

    def test_different_text_is_unique(self, tracker):
        tracker.record("What is 2 + 2?")

        assert tracker.is_duplicate("Which planet is closest to the Sun?") == False

    def test_short_candidate_prefix_of_seen(self, tracker):
        """A short text that is a prefix of a seen text is flagged (known heuristic)."""
        tracker.record("What is 2 + 2? Count carefully.")

        assert tracker.is_duplicate("What is") == True

    def test_empty_text_is_duplicate(self, tracker):
        assert tracker.is_duplicate("") == True
        assert tracker.is_duplicate("   ") == True

    def test_record_is_idempotent(self, tracker):
        tracker.record("Which shape has three sides?")
        tracker.record("which shape has three sides?  ")

        assert tracker.seen_in_session == {"which shape has three sides?"}

    def test_historical_match(self):
        tracker = UniquenessTracker(historical_texts=["What gas do we breathe in?"])

        assert tracker.is_duplicate("what gas do we breathe in?") == True
        assert tracker.seen_in_session == set()

    def test_historical_near_match_joins_history(self):
        """A newly found near-duplicate of history is remembered as historical."""
        tracker = UniquenessTracker(historical_texts=["What gas do we breathe in?"])

        assert tracker.is_duplicate("What gas do we breathe out?") == True
        assert "what gas do we breathe out?" in tracker.seen_historically

    def test_reset_keeps_history(self):
        tracker = UniquenessTracker(historical_texts=["How many days are in a week?"])
        tracker.record("Which season comes after winter?")

        tracker.reset()

        assert tracker.seen_in_session == set()
        assert tracker.is_duplicate("Which season comes after winter?") == False
        assert tracker.is_duplicate("How many days are in a week?") == True

    def test_extend_history(self, tracker):
        tracker.extend_history(["How many months are in a year?", ""])

        assert tracker.seen_historically == {"how many months are in a year?"}
        assert tracker.is_duplicate("How many months are in a year?") == True

    def test_custom_prefix_length(self):
        tracker = UniquenessTracker(prefix_length=5)
        tracker.record("Hello world")

        assert tracker.is_duplicate("Hello there") == True
        assert tracker.is_duplicate("Help me") == False

    def test_invalid_prefix_length(self):
        with pytest.raises(ValueError):
            UniquenessTracker(prefix_length=0)

    def test_exclusion_list(self, tracker):
        tracker.record("Zebra question here")
        tracker.record("Apple question here")

        assert tracker.exclusion_list() == ["apple question here", "zebra question here"]

    def test_properties_return_copies(self, tracker):
        tracker.record("Which shape has three sides?")
        tracker.seen_in_session.clear()

        assert len(tracker.seen_in_session) == 1

    def test_normalize(self):
        assert normalize_question_text("  MiXeD Case ") == "mixed case"
        assert normalize_question_text(None) == ""


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
