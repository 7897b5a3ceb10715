"""Unit tests for completion percentages and weighted form scoring."""

from __future__ import annotations

import pytest

from perfcycle.database.models.cycle import RatingScale
from perfcycle.review.scoring import (
    CycleFormConfig,
    completion_percentage,
    form_completion,
    missing_required,
    rating_bounds,
    rating_in_bounds,
    weighted_rating,
)

CONFIG = CycleFormConfig.from_cycle_config(
    {
        "sections": [
            {
                "id": "delivery",
                "title": "Delivery",
                "weight": 2.0,
                "questions": [
                    {"id": "q1", "text": "Quality", "weight": 1.0},
                    {"id": "q2", "text": "Pace", "weight": 3.0},
                ],
            },
            {
                "id": "growth",
                "title": "Growth",
                "weight": 1.0,
                "questions": [
                    {"id": "q3", "text": "Learning"},
                    {"id": "q4", "text": "Anything else?", "required": False, "rated": False},
                ],
            },
        ]
    }
)


class TestCompletionPercentage:
    """Test the rounding rule of completion percentages."""

    @pytest.mark.parametrize(
        "completed,total,expected",
        [
            (0, 0, 0),
            (0, 5, 0),
            (5, 5, 100),
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),
            (1, 200, 1),
            (1, 400, 0),
        ],
    )
    def test_rounding(self, completed: int, total: int, expected: int) -> None:
        """Halves round up; a zero total is 0%."""
        assert completion_percentage(completed, total) == expected

    def test_negative_counts_raise(self) -> None:
        with pytest.raises(ValueError):
            completion_percentage(-1, 3)


class TestRequiredAnswers:
    """Test required-question tracking."""

    def test_missing_required(self) -> None:
        answers = {"q1": {"rating": 4, "comment": None}, "q3": {"rating": None, "comment": "  "}}

        assert missing_required(CONFIG, answers) == ["q2", "q3"]

    def test_comment_counts_as_answer(self) -> None:
        answers = {
            "q1": {"rating": 4},
            "q2": {"rating": None, "comment": "Steady"},
            "q3": {"rating": 3},
        }

        assert missing_required(CONFIG, answers) == []
        assert form_completion(CONFIG, answers) == 100

    def test_form_completion_partial(self) -> None:
        assert form_completion(CONFIG, {"q1": {"rating": 5}}) == 33

    def test_no_questions(self) -> None:
        empty = CycleFormConfig.from_cycle_config(None)

        assert missing_required(empty, {}) == []
        assert form_completion(empty, {}) == 0


class TestWeightedRating:
    """Test the two-level weighted mean."""

    def test_weighted_sections_and_questions(self) -> None:
        answers = {"q1": {"rating": 4}, "q2": {"rating": 2}, "q3": {"rating": 5}}

        # delivery = (4*1 + 2*3) / 4 = 2.5; overall = (2.5*2 + 5*1) / 3
        assert weighted_rating(CONFIG, answers) == 3.33

    def test_unrated_section_is_ignored(self) -> None:
        answers = {"q3": {"rating": 4}, "q4": {"rating": 1}}

        assert weighted_rating(CONFIG, answers) == 4.0

    def test_nothing_rated(self) -> None:
        assert weighted_rating(CONFIG, {"q1": {"comment": "n/a"}}) is None


class TestRatingBounds:
    """Test rating scale bounds."""

    @pytest.mark.parametrize(
        "scale,bounds",
        [
            (RatingScale.five_point, (1.0, 5.0)),
            (RatingScale.four_point, (1.0, 4.0)),
            (RatingScale.three_point, (1.0, 3.0)),
            (RatingScale.percentage, (0.0, 100.0)),
        ],
    )
    def test_bounds(self, scale: RatingScale, bounds: tuple[float, float]) -> None:
        assert rating_bounds(scale) == bounds

    def test_in_bounds(self) -> None:
        assert rating_in_bounds(RatingScale.five_point, 5.0)
        assert not rating_in_bounds(RatingScale.five_point, 5.5)
        assert not rating_in_bounds(RatingScale.four_point, 0.5)
        assert rating_in_bounds(RatingScale.percentage, 0.0)
