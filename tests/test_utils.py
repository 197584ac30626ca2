"""
Tests for the pure helpers: validity window and weighted reward draw.
"""
import random
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from reviewspin.errors import MisconfiguredRewardSet
from reviewspin.utils import as_utc, gen_token, local_day, validity_window, weighted_choice

PARIS = ZoneInfo("Europe/Paris")


@dataclass
class R:
    id: int
    weight: float


class FixedRng:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


class TestValidityWindow:

    def test_valid_from_is_next_local_midnight(self):
        now = datetime(2025, 12, 4, 14, 30, tzinfo=PARIS)

        valid_from, _ = validity_window(now, 30, PARIS)

        assert valid_from == datetime(2025, 12, 5, 0, 0, tzinfo=PARIS)
        assert valid_from > now

    def test_expires_exactly_validity_days_later_at_midnight(self):
        now = datetime(2025, 12, 4, 14, 30, tzinfo=PARIS)

        valid_from, expires_at = validity_window(now, 30, PARIS)

        assert expires_at - valid_from == timedelta(days=30)
        assert expires_at == datetime(2026, 1, 4, 0, 0, tzinfo=PARIS)

    def test_window_across_dst_change_stays_on_midnight(self):
        # clocks go forward on 30 March 2025 in Paris
        now = datetime(2025, 3, 20, 10, 0, tzinfo=timezone.utc)

        valid_from, expires_at = validity_window(now, 30, PARIS)

        assert expires_at - valid_from == timedelta(days=30)
        assert (expires_at.hour, expires_at.minute) == (0, 0)
        assert expires_at.date().isoformat() == "2025-04-20"

    def test_exact_midnight_moves_to_following_day(self):
        now = datetime(2025, 12, 4, 0, 0, tzinfo=PARIS)

        valid_from, _ = validity_window(now, 30, PARIS)

        assert valid_from == datetime(2025, 12, 5, 0, 0, tzinfo=PARIS)

    def test_utc_now_uses_venue_calendar_day(self):
        # 23:30 UTC on the 4th is already 00:30 on the 5th in Paris
        now = datetime(2025, 12, 4, 23, 30, tzinfo=timezone.utc)

        valid_from, _ = validity_window(now, 7, PARIS)

        assert valid_from == datetime(2025, 12, 6, 0, 0, tzinfo=PARIS)

    def test_zero_days_gives_empty_window(self):
        now = datetime(2025, 12, 4, 14, 30, tzinfo=PARIS)

        valid_from, expires_at = validity_window(now, 0, PARIS)

        assert expires_at == valid_from

    def test_negative_days_rejected(self):
        with pytest.raises(ValueError):
            validity_window(datetime(2025, 12, 4, tzinfo=PARIS), -1, PARIS)

    def test_naive_now_is_treated_as_utc(self):
        assert local_day(datetime(2025, 12, 4, 23, 30), PARIS).isoformat() == "2025-12-05"


class TestWeightedChoice:

    def test_frequencies_converge_to_normalised_weights(self):
        rewards = [R(1, 1), R(2, 2), R(3, 7)]
        rng = random.Random(42)
        n = 60000

        counts = Counter(weighted_choice(rewards, rng).id for _ in range(n))

        assert counts[1] / n == pytest.approx(0.1, abs=0.01)
        assert counts[2] / n == pytest.approx(0.2, abs=0.01)
        assert counts[3] / n == pytest.approx(0.7, abs=0.01)

    def test_weights_need_not_sum_to_one(self):
        rewards = [R(1, 30), R(2, 10)]
        rng = random.Random(7)
        n = 20000

        counts = Counter(weighted_choice(rewards, rng).id for _ in range(n))

        assert counts[1] / n == pytest.approx(0.75, abs=0.015)

    def test_boundary_tie_goes_to_earlier_reward(self):
        rewards = [R(1, 1), R(2, 1)]

        assert weighted_choice(rewards, FixedRng(0.5)).id == 1

    def test_just_past_boundary_goes_to_next_reward(self):
        rewards = [R(1, 1), R(2, 1)]

        assert weighted_choice(rewards, FixedRng(0.5000001)).id == 2

    def test_zero_weight_reward_never_chosen(self):
        rewards = [R(1, 0), R(2, 1)]

        assert weighted_choice(rewards, FixedRng(0.0)).id == 2

    def test_exhausted_walk_falls_back_to_last_reward(self):
        rewards = [R(1, 1), R(2, 1), R(3, 0)]

        # a value past every cumulative weight, as float drift could produce
        assert weighted_choice(rewards, FixedRng(1.5)).id == 2

    def test_all_zero_weights_is_misconfigured(self):
        with pytest.raises(MisconfiguredRewardSet):
            weighted_choice([R(1, 0)], FixedRng(0.3))

    def test_empty_reward_set_is_misconfigured(self):
        with pytest.raises(MisconfiguredRewardSet):
            weighted_choice([])

    def test_default_rng_is_fresh_per_call(self):
        rewards = [R(i, 1) for i in range(50)]

        picks = {weighted_choice(rewards).id for _ in range(200)}

        assert len(picks) > 1


def test_tokens_are_unique_and_url_safe():
    tokens = {gen_token() for _ in range(500)}

    assert len(tokens) == 500
    assert all(len(t) == 32 for t in tokens)
    assert all("/" not in t and "+" not in t for t in tokens)


def test_as_utc_normalises_naive_and_aware():
    naive = datetime(2025, 1, 1, 12, 0)
    aware = datetime(2025, 1, 1, 13, 0, tzinfo=PARIS)

    assert as_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(aware).tzinfo == timezone.utc
    assert as_utc(None) is None
