import random
from collections import Counter

import pytest

from conftest import balanced_pool, core
from compass_engine.models import Axis
from compass_engine.sampler import BUCKET_ORDER, DEFAULT_SCREEN_PLANS, BalancedSampler, bucket_for


def bucket_counts(screens):
    return Counter(bucket_for(q) for screen in screens for q in screen)


def test_default_plan_draws_five_from_each_bucket():
    screens = BalancedSampler(DEFAULT_SCREEN_PLANS, random.Random(7)).draw(balanced_pool())
    assert [len(s) for s in screens] == [5] * 6
    assert bucket_counts(screens) == {name: 5 for name in BUCKET_ORDER}
    ids = [q.id for s in screens for q in s]
    assert len(ids) == len(set(ids)), "no question may be drawn twice"


def test_each_screen_follows_its_plan():
    screens = BalancedSampler(DEFAULT_SCREEN_PLANS, random.Random(3)).draw(balanced_pool())
    for plan, screen in zip(DEFAULT_SCREEN_PLANS, screens):
        assert Counter(bucket_for(q) for q in screen) == Counter(plan)


def test_same_seed_same_schedule():
    first = BalancedSampler(rng=random.Random(99)).draw(balanced_pool())
    second = BalancedSampler(rng=random.Random(99)).draw(balanced_pool())
    assert [[q.id for q in s] for s in first] == [[q.id for q in s] for s in second]


def test_different_seeds_keep_balance():
    orders = set()
    for seed in range(5):
        screens = BalancedSampler(rng=random.Random(seed)).draw(balanced_pool())
        assert bucket_counts(screens) == {name: 5 for name in BUCKET_ORDER}
        orders.add(tuple(q.id for s in screens for q in s))
    assert len(orders) > 1


def test_empty_bucket_substitutes_opposite_direction_first():
    # No left-economic questions at all
    pool = [q for q in balanced_pool() if bucket_for(q) != "econ_left"]
    screens = BalancedSampler([["econ_left", "auth_lib"]], random.Random(1)).draw(pool)
    assert [bucket_for(q) for q in sorted(screens[0], key=lambda q: q.id)] == ["econ_right", "auth_lib"]


def test_substitution_falls_back_to_fullest_bucket():
    pool = [core(i, Axis.AUTHORITY, 1) for i in range(1, 4)] + [core(10, Axis.CULTURAL, -1)]
    screens = BalancedSampler([["econ_left", "econ_left"]], random.Random(1)).draw(pool)
    assert [bucket_for(q) for q in screens[0]] == ["auth_auth", "auth_auth"]


def test_substitution_keeps_total_when_pool_is_lopsided():
    # Fifteen economic-right and fifteen authoritarian questions fill all thirty slots
    pool = [core(i, Axis.ECONOMIC, 1) for i in range(1, 16)] + [core(i, Axis.AUTHORITY, 1) for i in range(16, 31)]
    screens = BalancedSampler(DEFAULT_SCREEN_PLANS, random.Random(5)).draw(pool)
    drawn = [q.id for s in screens for q in s]
    assert sorted(drawn) == list(range(1, 31))


def test_exhausted_pool_gives_short_screen(caplog):
    pool = [core(1, Axis.ECONOMIC, -1), core(2, Axis.ECONOMIC, 1)]
    screens = BalancedSampler([["econ_left", "econ_right", "auth_lib"]], random.Random(1)).draw(pool)
    assert len(screens[0]) == 2
    assert "exhausted" in caplog.text


def test_unknown_bucket_rejected():
    with pytest.raises(ValueError, match="Unknown sampler buckets"):
        BalancedSampler([["econ_left", "vibes"]])
