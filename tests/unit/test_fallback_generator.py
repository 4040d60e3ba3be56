"""
Unit Tests for Fallback Generator

Tests deterministic template questions used when AI generation fails.
"""

import pytest
import re
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_practice_engine", "src"))

from adaptive_practice_engine.fallback_generator import (
    MATH_TEMPLATES,
    OPERAND_RANGES,
    SAFE_DEFAULT,
    FallbackGenerator,
    _distractors,
    clamp_level,
    subject_category,
)
from adaptive_practice_engine.question_record import QuestionOrigin


class TestFallbackGenerator:
    """Test suite for FallbackGenerator."""

    @pytest.fixture
    def generator(self):
        return FallbackGenerator()

    def test_deterministic_content(self, generator):
        """Same inputs give the same question content; ids stay unique."""
        first = generator.generate("mathematics", "addition", 3, 12345)
        second = generator.generate("mathematics", "addition", 3, 12345)

        assert first == second
        assert first.prompt == second.prompt
        assert first.options == second.options
        assert first.id != second.id

    def test_template_follows_seed(self, generator):
        for seed, operation in enumerate(MATH_TEMPLATES):
            question = generator.generate("mathematics", "mixed", 2, seed)
            assert question.concepts_covered == {operation}

    @pytest.mark.parametrize("subject", ["mathematics", "english", "science", "history"])
    def test_questions_are_valid(self, generator, subject):
        for level in range(1, 6):
            for seed in range(30):
                question = generator.generate(subject, "skills", level, seed)

                assert question.origin == QuestionOrigin.FALLBACK
                assert question.prompt.strip()
                assert len(question.options) >= 2
                assert len(set(question.options)) == len(question.options)
                assert 0 <= question.correct_index < len(question.options)
                assert question.estimated_time_seconds > 0

    def test_addition_answer_is_correct(self, generator):
        for level in range(1, 6):
            question = generator.generate("math", "addition", level, 6 * level)
            match = re.match(r"What is (\d+) \+ (\d+)\?", question.prompt)

            assert match is not None
            a, b = int(match.group(1)), int(match.group(2))
            assert int(question.correct_option) == a + b
            low, high = OPERAND_RANGES[level]
            assert low <= a <= high and low <= b <= high

    def test_division_has_whole_answer(self, generator):
        question = generator.generate("mathematics", "division", 4, 3)
        match = re.match(r"What is (\d+) ÷ (\d+)\?", question.prompt)

        assert match is not None
        dividend, divisor = int(match.group(1)), int(match.group(2))
        assert dividend % divisor == 0
        assert int(question.correct_option) == dividend // divisor

    def test_comparison_is_yes_no(self, generator):
        question = generator.generate("mathematics", "comparison", 2, 4)
        match = re.match(r"Is (\d+) greater than (\d+)\?", question.prompt)

        assert sorted(question.options) == ["No", "Yes"]
        expected = "Yes" if int(match.group(1)) > int(match.group(2)) else "No"
        assert question.correct_option == expected

    def test_estimated_time_grows_with_level(self, generator):
        assert generator.generate("mathematics", "x", 1, 0).estimated_time_seconds == 30
        assert generator.generate("mathematics", "x", 3, 0).estimated_time_seconds == 30
        assert generator.generate("mathematics", "x", 5, 0).estimated_time_seconds == 40
        # Pattern questions get extra time
        assert generator.generate("mathematics", "x", 1, 5).estimated_time_seconds == 40

    def test_level_is_clamped(self, generator):
        assert generator.generate("mathematics", "x", 99, 7) == generator.generate("mathematics", "x", 5, 7)
        assert generator.generate("mathematics", "x", 0, 7) == generator.generate("mathematics", "x", 1, 7)

    def test_language_word_and_reading(self, generator):
        word = generator.generate("english", "vocabulary", 1, 0)
        reading = generator.generate("english", "reading", 1, 10)

        assert word.prompt.startswith('"happy" means the same as')
        assert word.correct_option == "joyful"
        assert reading.prompt.startswith('Read: "')
        assert reading.concepts_covered == {"reading comprehension"}

    def test_science_question(self, generator):
        question = generator.generate("science", "biology", 2, 2)

        assert "spider" in question.prompt
        assert question.correct_option == "8"

    def test_unknown_subject_uses_generic_bank(self, generator):
        question = generator.generate("history", "timelines", 1, 2)

        assert question.prompt.startswith("Which shape has three sides?")
        assert question.correct_option == "triangle"
        assert question.concepts_covered == {"timelines"}

    def test_never_raises(self, generator):
        def broken(*args):
            raise RuntimeError("template bank exploded")

        generator._builders["mathematics"] = broken
        question = generator.generate("mathematics", "addition", 3, 1)

        assert question.prompt == SAFE_DEFAULT["prompt"]
        assert question.origin == QuestionOrigin.FALLBACK
        assert question.correct_option == "circle"

    def test_bad_seed_gives_safe_default(self, generator):
        question = generator.generate("mathematics", "addition", 3, "not-a-number")

        assert question.prompt == SAFE_DEFAULT["prompt"]


class TestHelpers:
    """Module-level helpers."""

    def test_subject_category(self):
        assert subject_category("Mathematics") == "mathematics"
        assert subject_category("math") == "mathematics"
        assert subject_category("English Language") == "language"
        assert subject_category("Science") == "science"
        assert subject_category("Art") == "generic"
        assert subject_category("") == "generic"

    def test_clamp_level(self):
        assert clamp_level(0) == 1
        assert clamp_level(3) == 3
        assert clamp_level(9) == 5
        assert clamp_level("bad") == 1

    def test_distractors(self):
        wrong = _distractors(0, [-1, 1, -10, 10])

        assert wrong == [1, 10, 2]
        assert 0 not in wrong

    def test_distractors_skip_answer_and_repeats(self):
        wrong = _distractors(12, [0, 3, 3, -3])

        assert 12 not in wrong
        assert len(wrong) == len(set(wrong)) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
