"""Static achievement catalog.

Each rule is a pure predicate over an ``AchievementFacts`` snapshot.
Thresholds are inclusive; a fact of ``None`` means "unknown" and never passes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from fractions import Fraction

ASSETS_100M = 100_000_000


@dataclass(frozen=True)
class AchievementFacts:
    visit_streak: int | None = None
    prediction_accuracy: Fraction | float | None = None
    prediction_streak: int | None = None
    correct_votes: int | None = None
    has_diagnosis: bool | None = None
    total_assets: float | None = None
    has_shared: bool | None = None
    has_posted: bool | None = None


@dataclass(frozen=True)
class Achievement:
    id: str
    category: str
    title: str
    description: str
    reward: int
    rule: Callable[[AchievementFacts], bool]


def at_least(field: str, threshold: float) -> Callable[[AchievementFacts], bool]:
    def rule(facts: AchievementFacts) -> bool:
        value = getattr(facts, field)
        return value is not None and value >= threshold
    return rule


def is_true(field: str) -> Callable[[AchievementFacts], bool]:
    def rule(facts: AchievementFacts) -> bool:
        return getattr(facts, field) is True
    return rule


CATALOG: tuple[Achievement, ...] = (
    Achievement("first_visit", "streak", "First Visit",
                "Welcome aboard", 3, at_least("visit_streak", 1)),
    Achievement("streak_7", "streak", "7-Day Streak",
                "A full week in a row. The habit has started", 10, at_least("visit_streak", 7)),
    Achievement("streak_30", "streak", "30-Day Streak",
                "A whole month in a row", 30, at_least("visit_streak", 30)),
    Achievement("first_correct", "prediction", "First Hit",
                "Your first correct prediction", 5, at_least("correct_votes", 1)),
    Achievement("streak_correct_5", "prediction", "5 in a Row",
                "Five correct predictions in a row", 15, at_least("prediction_streak", 5)),
    Achievement("accuracy_80", "prediction", "80% Accuracy",
                "Prediction accuracy of 80% or better", 20, at_least("prediction_accuracy", 80)),
    Achievement("first_diagnosis", "portfolio", "First Diagnosis",
                "Completed your first portfolio diagnosis", 5, is_true("has_diagnosis")),
    Achievement("assets_100m", "portfolio", "100M Club",
                "Total assets reached 100,000,000", 30, at_least("total_assets", ASSETS_100M)),
    Achievement("first_share", "social", "First Share",
                "Shared a context card", 5, is_true("has_shared")),
    Achievement("first_post", "social", "First Post",
                "Wrote your first community post", 5, is_true("has_posted")),
)

BY_ID: dict[str, Achievement] = {a.id: a for a in CATALOG}


def eligible(facts: AchievementFacts) -> list[Achievement]:
    """Catalog entries whose rule passes for ``facts``, in catalog order."""
    return [a for a in CATALOG if a.rule(facts)]
