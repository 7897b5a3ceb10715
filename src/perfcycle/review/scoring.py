"""Weighted question scoring for review forms.

A cycle's ``config`` column holds its question layout::

    {
        "sections": [
            {
                "id": "delivery",
                "title": "Delivery",
                "weight": 2.0,
                "questions": [
                    {"id": "q1", "text": "...", "required": true, "weight": 1.0}
                ]
            }
        ]
    }

Answers on a form map question ids to ``{"rating": float | None,
"comment": str | None}``. Only what completion and the weighted overall
rating need is modelled here.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from perfcycle.database.models.cycle import RatingScale

_RATING_BOUNDS: dict[RatingScale, tuple[float, float]] = {
    RatingScale.five_point: (1.0, 5.0),
    RatingScale.four_point: (1.0, 4.0),
    RatingScale.three_point: (1.0, 3.0),
    RatingScale.percentage: (0.0, 100.0),
}


class QuestionConfig(BaseModel):
    """A single review question."""

    id: str
    text: str = ""
    required: bool = True
    rated: bool = True
    weight: float = Field(default=1.0, ge=0.0)


class SectionConfig(BaseModel):
    """A weighted group of questions."""

    id: str
    title: str = ""
    weight: float = Field(default=1.0, ge=0.0)
    questions: list[QuestionConfig] = Field(default_factory=list)


class CycleFormConfig(BaseModel):
    """Question layout shared by every form of a cycle."""

    sections: list[SectionConfig] = Field(default_factory=list)

    @classmethod
    def from_cycle_config(cls, config: dict[str, Any] | None) -> CycleFormConfig:
        """Parse the layout stored on a cycle (missing layout means no questions)."""
        return cls.model_validate({"sections": (config or {}).get("sections", [])})

    def questions(self) -> list[QuestionConfig]:
        return [question for section in self.sections for question in section.questions]


def completion_percentage(completed: int, total: int) -> int:
    """Return ``round(100 * completed / total)`` with halves rounded up.

    A zero total is defined as 0% rather than a division error.

    Args:
        completed: Number of completed items.
        total: Number of items.

    Returns:
        Integer percentage.
    """
    if completed < 0 or total < 0:
        raise ValueError("completed and total must be non-negative")
    if total == 0:
        return 0
    # Integer form of floor(100 * completed / total + 0.5)
    return (200 * completed + total) // (2 * total)


def _is_answered(answer: Any) -> bool:
    if not isinstance(answer, dict):
        return answer is not None and answer != ""
    comment = answer.get("comment")
    return answer.get("rating") is not None or bool(comment and str(comment).strip())


def answered_required(
    config: CycleFormConfig,
    answers: dict[str, Any],
) -> tuple[int, int]:
    """Count the answered required questions.

    Returns:
        Tuple of (answered, required).
    """
    required = [q for q in config.questions() if q.required]
    answered = sum(1 for q in required if _is_answered(answers.get(q.id)))
    return answered, len(required)


def missing_required(config: CycleFormConfig, answers: dict[str, Any]) -> list[str]:
    """Return the ids of required questions without an answer."""
    return [
        q.id for q in config.questions() if q.required and not _is_answered(answers.get(q.id))
    ]


def form_completion(config: CycleFormConfig, answers: dict[str, Any]) -> int:
    """Percentage of required questions answered on a form."""
    answered, required = answered_required(config, answers)
    return completion_percentage(answered, required)


def weighted_rating(config: CycleFormConfig, answers: dict[str, Any]) -> float | None:
    """Compute the weighted overall rating of a form.

    Each section's score is the question-weighted mean of its rated answers;
    the overall score is the section-weighted mean of the sections that have
    at least one rating.

    Returns:
        Rating rounded to two decimals, or None when nothing is rated.
    """
    section_total = 0.0
    section_weight = 0.0

    for section in config.sections:
        score = 0.0
        weight = 0.0
        for question in section.questions:
            if not question.rated:
                continue
            answer = answers.get(question.id)
            if not isinstance(answer, dict) or answer.get("rating") is None:
                continue
            score += float(answer["rating"]) * question.weight
            weight += question.weight

        if weight > 0 and section.weight > 0:
            section_total += (score / weight) * section.weight
            section_weight += section.weight

    if section_weight == 0:
        return None
    return round(section_total / section_weight, 2)


def rating_bounds(scale: RatingScale) -> tuple[float, float]:
    """Return the (minimum, maximum) rating allowed by a scale."""
    return _RATING_BOUNDS[scale]


def rating_in_bounds(scale: RatingScale, rating: float) -> bool:
    low, high = rating_bounds(scale)
    return low <= rating <= high
