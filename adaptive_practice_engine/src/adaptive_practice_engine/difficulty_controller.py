"""
Automatic Difficulty Adaptation

Adjusts practice difficulty from rolling performance signals.
Uses accuracy plus answer streaks to decide whether the level should change.
"""

from dataclasses import dataclass
from typing import Optional

from adaptive_practice_engine.session_state import PerformanceMetrics


@dataclass(frozen=True)
class DifficultyDecision:
    """Result of a difficulty evaluation."""
    new_level: int
    changed: bool
    reason: str
    direction: Optional[str] = None  # "increase", "decrease", or None


class DifficultyController:
    """
    Rule-based difficulty control loop.

    Rules (first match wins):
    - Fewer than 3 attempts → no change
    - accuracy ≥ 90% with 2+ correct in a row, or ≥ 85% with 3+ → one level up
    - accuracy ≤ 30%, or ≤ 50% with 2+ incorrect in a row → one level down
    - Otherwise keep the current level

    Stateless: the streak thresholds provide the hysteresis, so the same
    metrics always produce the same decision.
    """

    MIN_LEVEL = 1
    MAX_LEVEL = 5

    # Thresholds
    MIN_ATTEMPTS = 3
    HIGH_ACCURACY = 90.0
    HIGH_ACCURACY_STREAK = 2
    GOOD_ACCURACY = 85.0
    GOOD_ACCURACY_STREAK = 3
    VERY_LOW_ACCURACY = 30.0
    LOW_ACCURACY = 50.0
    LOW_ACCURACY_STREAK = 2

    def __init__(self, min_level: int = MIN_LEVEL, max_level: int = MAX_LEVEL):
        if min_level > max_level:
            raise ValueError(f"min_level ({min_level}) must not exceed max_level ({max_level})")
        self.min_level = min_level
        self.max_level = max_level

    def evaluate(self, metrics: PerformanceMetrics, current_level: int) -> DifficultyDecision:
        """
        Check if difficulty should be adjusted.

        Args:
            metrics: Current session performance metrics
            current_level: Level used for the question just answered

        Returns:
            DifficultyDecision; `changed` is False when the level stays put
        """
        if metrics.total_attempts < self.MIN_ATTEMPTS:
            return DifficultyDecision(
                new_level=current_level,
                changed=False,
                reason=f"Need at least {self.MIN_ATTEMPTS} answers (have {metrics.total_attempts})"
            )

        accuracy = metrics.accuracy_percent

        if self._should_increase(metrics):
            new_level = self._raise_level(current_level)
            return DifficultyDecision(
                new_level=new_level,
                changed=new_level != current_level,
                reason=(f"High performance (accuracy={accuracy:.0f}%, "
                        f"{metrics.consecutive_correct} correct in a row)"),
                direction="increase"
            )

        if self._should_decrease(metrics):
            new_level = self._lower_level(current_level)
            return DifficultyDecision(
                new_level=new_level,
                changed=new_level != current_level,
                reason=(f"Low performance (accuracy={accuracy:.0f}%, "
                        f"{metrics.consecutive_incorrect} incorrect in a row)"),
                direction="decrease"
            )

        return DifficultyDecision(
            new_level=current_level,
            changed=False,
            reason=f"Performance stable (accuracy={accuracy:.0f}%)"
        )

    def _should_increase(self, metrics: PerformanceMetrics) -> bool:
        accuracy = metrics.accuracy_percent
        streak = metrics.consecutive_correct
        return (
            (accuracy >= self.HIGH_ACCURACY and streak >= self.HIGH_ACCURACY_STREAK)
            or (accuracy >= self.GOOD_ACCURACY and streak >= self.GOOD_ACCURACY_STREAK)
        )

    def _should_decrease(self, metrics: PerformanceMetrics) -> bool:
        accuracy = metrics.accuracy_percent
        return (
            accuracy <= self.VERY_LOW_ACCURACY
            or (accuracy <= self.LOW_ACCURACY and metrics.consecutive_incorrect >= self.LOW_ACCURACY_STREAK)
        )

    def _raise_level(self, current: int) -> int:
        """Raise difficulty level."""
        return min(self.max_level, current + 1)

    def _lower_level(self, current: int) -> int:
        """Lower difficulty level."""
        return max(self.min_level, current - 1)
