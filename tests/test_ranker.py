from __future__ import annotations

import pytest

from conftest import make_segment
from transitmesh.models import ModeCategory, UserPreferences
from transitmesh.services.assembler import PlanAssembler
from transitmesh.services.ranker import PlanRanker, ScoringWeights


@pytest.fixture
def assembler(clock):
    return PlanAssembler(clock=clock)


def _plan(assembler, **kwargs):
    kwargs.setdefault("emissions", 0)
    return assembler.build_plan([make_segment(ModeCategory.RIDEHAIL, **kwargs)])


def test_speed_priority_puts_faster_plan_first(assembler):
    a = _plan(assembler, duration=20, cost=3, reliability=0.9)
    b = _plan(assembler, duration=15, cost=10, reliability=0.95)

    ranked = PlanRanker().rank([a, b], UserPreferences(prioritize_speed=True, max_cost=50))

    assert [p.id for p in ranked] == [b.id, a.id]
    assert ranked[0].match_score > ranked[1].match_score


def test_cost_priority_puts_cheaper_plan_first(assembler):
    a = _plan(assembler, duration=20, cost=3, reliability=0.9)
    b = _plan(assembler, duration=15, cost=10, reliability=0.95)

    ranked = PlanRanker().rank([a, b], UserPreferences(prioritize_cost=True))

    assert [p.id for p in ranked] == [a.id, b.id]


def test_scores_stay_in_unit_interval(assembler):
    best = _plan(assembler, duration=0, cost=0, reliability=1, comfort=10, accessibility=10)
    worst = _plan(
        assembler, duration=500, cost=200, emissions=9000, reliability=0, comfort=0, accessibility=0,
    )
    prefs = UserPreferences(
        prioritize_speed=True, prioritize_cost=True, prioritize_comfort=True,
        prioritize_environment=True, accessibility_needs=["wheelchair"], max_cost=1000,
    )

    ranked = PlanRanker().rank([worst, best], prefs)

    assert ranked[0].match_score == 1.0
    assert ranked[1].match_score == 0.0


def test_budget_is_a_hard_filter(assembler):
    cheap = _plan(assembler, cost=10)
    at_limit = _plan(assembler, cost=20)
    pricey = _plan(assembler, cost=20.01)

    ranked = PlanRanker().rank([cheap, at_limit, pricey], UserPreferences(max_cost=20))

    assert {p.id for p in ranked} == {cheap.id, at_limit.id}


def test_live_updates_requirement_drops_unmonitored_plans(assembler):
    live = _plan(assembler, real_time_updates=True)
    blind = _plan(assembler, real_time_updates=False)

    ranked = PlanRanker().rank([live, blind], UserPreferences(real_time_updates_required=True))

    assert [p.id for p in ranked] == [live.id]


def test_at_most_five_plans(assembler):
    plans = [_plan(assembler, duration=10 + i) for i in range(8)]
    assert len(PlanRanker().rank(plans, UserPreferences())) == 5
    assert len(PlanRanker(max_results=3).rank(plans, UserPreferences())) == 3


def test_ranking_is_deterministic_and_stable_on_ties(assembler):
    plans = [_plan(assembler) for _ in range(4)]
    prefs = UserPreferences()

    first = PlanRanker().rank(plans, prefs)
    second = PlanRanker().rank(plans, prefs)

    assert [p.id for p in first] == [p.id for p in second] == [p.id for p in plans]


def test_reliability_term_averages_legs(assembler):
    ranker = PlanRanker()
    prefs = UserPreferences()
    mixed = [make_segment(reliability=0.6, emissions=0), make_segment(reliability=1.0, emissions=0)]
    flat = [make_segment(reliability=0.8, emissions=0), make_segment(reliability=0.8, emissions=0)]
    assert ranker.score(mixed, prefs) == pytest.approx(ranker.score(flat, prefs))


def test_ranking_leaves_original_plans_untouched(assembler):
    plan = _plan(assembler)
    ranked = PlanRanker().rank([plan], UserPreferences())
    assert plan.match_score == 0.0
    assert ranked[0].id == plan.id and ranked[0].match_score > 0


def test_weights_switch_on_flags():
    weights = ScoringWeights().resolve(UserPreferences(prioritize_speed=True, accessibility_needs=["wheelchair"]))
    assert weights["speed"] == 0.30
    assert weights["cost"] == 0.15
    assert weights["accessibility"] == 0.30
    assert weights["reliability"] == 0.20
