import pytest

from arcade.logic.enums import Grade
from arcade.logic.grading import grade_for, grade_label, round_half_up


class TestGradeFor:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (100, Grade.S),
            (95, Grade.S),
            (94.99, Grade.A),
            (85, Grade.A),
            (84.99, Grade.B),
            (75, Grade.B),
            (74.99, Grade.C),
            (60, Grade.C),
            (59.99, Grade.D),
            (40, Grade.D),
            (39.99, Grade.F),
            (0, Grade.F),
        ],
    )
    def test_band_boundaries_belong_to_the_higher_band(self, score, expected):
        assert grade_for(score) is expected

    def test_bonus_inclusive_totals_above_100_are_s(self):
        assert grade_for(148) is Grade.S


class TestGradeLabel:
    def test_top_and_bottom_labels(self):
        assert grade_label(95) == "Absolutely Crushed It!"
        assert grade_label(0) == "What Just Happened?"

    def test_boundary_uses_higher_label(self):
        assert grade_label(80) == "Pretty Damn Good!"
        assert grade_label(79.99) == "Solidly Mediocre"


class TestRoundHalfUp:
    def test_halves_round_up_not_to_even(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(16.5) == 17

    def test_rounds_to_digits(self):
        assert round_half_up(66.666, 2) == 66.67
        assert round_half_up(74.0, 2) == 74.0
