"""
Goal Complexity Analyzer

Scores a free-form goal on a 1-10 scale and recommends how deep the
hierarchical decomposition should go. Pure keyword heuristics, no I/O.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

BASE_COMPLEXITY_SCORE = 3
PROFESSIONAL_COMPLEXITY_BONUS = 4
TECHNICAL_COMPLEXITY_BONUS = 3
MASTERY_COMPLEXITY_BONUS = 2
TIME_PRESSURE_BONUS = 1
MAX_DOMAIN_BONUS = 2
MIN_COMPLEXITY_SCORE = 1
MAX_COMPLEXITY_SCORE = 10

SIMPLE_THRESHOLD = 3
MODERATE_THRESHOLD = 6
COMPLEX_THRESHOLD = 8

PROFESSIONAL_TERMS = (
    "professional",
    "career",
    "job",
    "certification",
    "certified",
    "industry",
    "business",
    "freelance",
)
TECHNICAL_TERMS = (
    "programming",
    "software",
    "engineering",
    "machine learning",
    "ai",
    "ml",
    "algorithm",
    "security",
    "cybersecurity",
    "data science",
    "mathematics",
    "physics",
    "kubernetes",
    "cloud",
)
MASTERY_TERMS = ("master", "mastery", "advanced", "expert", "deep", "professional-level")
TIME_PRESSURE_TERMS = ("quickly", "fast", "asap", "urgent", "deadline", "in a week", "in a month")


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    EXPERT = "expert"


@dataclass
class ComplexityAnalysis:
    """Result of scoring a goal."""

    score: int
    level: ComplexityLevel
    recommended_depth: int
    factors: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return f"Goal complexity: {self.score}/10. {', '.join(self.factors)}."

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "recommended_depth": self.recommended_depth,
            "factors": list(self.factors),
            "analysis": self.summary,
        }


def _contains_any(text: str, terms: tuple[str, ...]) -> list[str]:
    return [t for t in terms if re.search(rf"\b{re.escape(t)}\b", text)]


def level_for_score(score: int) -> ComplexityLevel:
    if score <= SIMPLE_THRESHOLD:
        return ComplexityLevel.SIMPLE
    if score <= MODERATE_THRESHOLD:
        return ComplexityLevel.MODERATE
    if score <= COMPLEX_THRESHOLD:
        return ComplexityLevel.COMPLEX
    return ComplexityLevel.EXPERT


def depth_for_score(score: int) -> int:
    if score <= SIMPLE_THRESHOLD:
        return 2
    if score <= MODERATE_THRESHOLD:
        return 3
    if score <= COMPLEX_THRESHOLD:
        return 4
    return 5


class ComplexityAnalyzer:
    """Deterministic goal complexity scoring."""

    def analyze(
        self,
        goal: str | None,
        context: str | None = None,
        focus_areas: list[str] | None = None,
    ) -> ComplexityAnalysis:
        goal_text = (goal or "").strip().lower()
        if not goal_text:
            return ComplexityAnalysis(
                score=MIN_COMPLEXITY_SCORE,
                level=ComplexityLevel.SIMPLE,
                recommended_depth=2,
                factors=["Empty goal"],
            )

        text = f"{goal_text} {(context or '').lower()}"
        score = BASE_COMPLEXITY_SCORE
        factors = ["Base complexity"]

        if _contains_any(text, PROFESSIONAL_TERMS):
            score += PROFESSIONAL_COMPLEXITY_BONUS
            factors.append("Professional-level outcome")
        if matched := _contains_any(text, TECHNICAL_TERMS):
            score += TECHNICAL_COMPLEXITY_BONUS
            factors.append(f"Technical domain ({matched[0]})")
        if _contains_any(text, MASTERY_TERMS):
            score += MASTERY_COMPLEXITY_BONUS
            factors.append("Mastery target")
        if _contains_any(text, TIME_PRESSURE_TERMS):
            score += TIME_PRESSURE_BONUS
            factors.append("Time pressure")

        areas = [a for a in (focus_areas or []) if a and a.strip()]
        if areas:
            domain_bonus = min(MAX_DOMAIN_BONUS, len(areas) // 2 + 1)
            score += domain_bonus
            factors.append(f"{len(areas)} focus area(s)")

        score = max(MIN_COMPLEXITY_SCORE, min(MAX_COMPLEXITY_SCORE, score))
        return ComplexityAnalysis(
            score=score,
            level=level_for_score(score),
            recommended_depth=depth_for_score(score),
            factors=factors,
        )


complexity_analyzer = ComplexityAnalyzer()
