import math

import pytest
from pydantic import ValidationError

from arcade.logic.enums import Grade
from arcade.logic.exceptions import ScoringError
from arcade.logic.scoring import (
    AccuracyRule,
    DeadlineRule,
    DiminishingRule,
    PointsRule,
    ProgressionRule,
    ScoringRegistry,
    apply_time_bonus,
)
from arcade.logic.types import GameScore, ScoreReport


def _score(normalized: float) -> GameScore:
    return GameScore(game_id="g", game_name="G", raw_score=0, normalized_score=normalized, grade=Grade.F)


class TestRules:
    def test_accuracy_is_share_of_correct_answers(self):
        value, breakdown = AccuracyRule().normalize(ScoreReport(2, 3), 0, 60)
        assert value == 66.67
        assert "2/3 correct" in breakdown

    def test_accuracy_clamps_raw_above_max(self):
        value, _ = AccuracyRule().normalize(ScoreReport(7, 5), 0, 60)
        assert value == 100

    def test_accuracy_is_100_only_when_every_answer_is_correct(self):
        value, _ = AccuracyRule().normalize(ScoreReport(99999, 100000), 0, 30)
        assert value == 99.99
        assert AccuracyRule().normalize(ScoreReport(100000, 100000), 0, 30)[0] == 100

    def test_progression_soft_caps_at_max_level(self):
        rule = ProgressionRule(max_level=10)
        assert rule.normalize(ScoreReport(4, 0), 0, 60)[0] == 40
        assert rule.normalize(ScoreReport(14, 0), 0, 60)[0] == 100

    def test_points_uses_tuned_denominator(self):
        value, _ = PointsRule(denominator=400).normalize(ScoreReport(100, 0), 0, 90)
        assert value == 25

    def test_diminishing_approaches_but_never_exceeds_100(self):
        rule = DiminishingRule(k=60)
        at_k, _ = rule.normalize(ScoreReport(60, 0), 0, 75)
        huge, _ = rule.normalize(ScoreReport(1_000_000, 0), 0, 75)
        assert at_k == 50
        assert huge <= 100

    def test_deadline_completion_rewards_time_left(self):
        rule = DeadlineRule(base=50, bonus_range=50, partial_cap=40, completion_threshold=0.5)
        value, _ = rule.normalize(ScoreReport(4, 4), 15, 30)
        assert value == 75

    def test_deadline_failure_earns_partial_credit_for_time_spent(self):
        rule = DeadlineRule(base=50, bonus_range=50, partial_cap=40, completion_threshold=1.0)
        value, breakdown = rule.normalize(ScoreReport(1, 4), 15, 30)
        assert value == 20
        assert breakdown == "Not completed"

    def test_deadline_rejects_constants_above_100(self):
        with pytest.raises(ValidationError):
            DeadlineRule(base=60, bonus_range=50)

    def test_rule_without_a_formula_cannot_be_built(self):
        class NoFormula(AccuracyRule.__base__):
            pass

        with pytest.raises(TypeError, match="abstract"):
            NoFormula()

    def test_negative_raw_scores_normalize_to_zero(self):
        assert PointsRule(denominator=100).normalize(ScoreReport(-30, 0), 0, 60)[0] == 0


class TestApplyTimeBonus:
    def test_bonus_is_half_the_score_scaled_by_time_left(self):
        scored = apply_time_bonus(_score(80), time_remaining=30, total_duration=60)
        assert scored.time_bonus == 20
        assert scored.total_with_bonus == 100
        assert scored.grade is Grade.S

    def test_no_time_left_means_no_bonus(self):
        scored = apply_time_bonus(_score(80), time_remaining=0, total_duration=60)
        assert scored.time_bonus is None
        assert scored.final_score == 80

    def test_bonus_is_not_applied_twice(self):
        once = apply_time_bonus(_score(80), 30, 60)
        assert apply_time_bonus(once, 30, 60) == once

    def test_time_left_beyond_duration_is_capped(self):
        scored = apply_time_bonus(_score(60), time_remaining=500, total_duration=60)
        assert scored.time_bonus == 30


class TestScoringRegistry:
    def test_accuracy_with_time_bonus_regrades_the_total(self, packaged_catalog):
        registry = ScoringRegistry.from_catalog(packaged_catalog)
        game = packaged_catalog.get("odd-man-out")

        score = registry.normalize(game, ScoreReport(2, 3), time_remaining=30)

        assert score.normalized_score == 66.67
        assert score.time_bonus == 17
        assert score.total_with_bonus == 83.67
        assert score.grade is Grade.B

    def test_games_without_time_bonus_keep_their_score(self, packaged_catalog):
        registry = ScoringRegistry.from_catalog(packaged_catalog)
        game = packaged_catalog.get("snake")

        score = registry.normalize(game, ScoreReport(60, 0), time_remaining=40)

        assert score.time_bonus is None
        assert score.final_score == 50

    def test_every_result_stays_in_range(self, packaged_catalog):
        registry = ScoringRegistry.from_catalog(packaged_catalog)
        for game in packaged_catalog.games():
            for raw in (0, 1, 50, 10_000):
                score = registry.normalize(game, ScoreReport(raw, 100))
                assert 0 <= score.normalized_score <= 100
                assert math.isfinite(score.final_score)

    def test_unknown_game_raises_scoring_error(self, packaged_catalog, catalog):
        registry = ScoringRegistry.from_catalog(packaged_catalog)
        with pytest.raises(ScoringError, match="alpha"):
            registry.normalize(catalog.get("alpha"), ScoreReport(1, 1))

    def test_duplicate_registration_is_rejected(self):
        registry = ScoringRegistry()
        registry.register("alpha", AccuracyRule())
        with pytest.raises(ValueError, match="already registered"):
            registry.register("alpha", AccuracyRule())
