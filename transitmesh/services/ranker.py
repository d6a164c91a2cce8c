from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Sequence

from transitmesh.models import JourneyPlan, JourneySegment, UserPreferences

logger = logging.getLogger(__name__)

MAX_RESULTS = 5

# Saturation points of the normalised terms
DURATION_CEILING_MIN = 120.0
COST_CEILING = 50.0
EMISSIONS_CEILING_G = 5000.0


@dataclass(frozen=True)
class ScoringWeights:
    """(boosted, baseline) pairs for the four preference flags."""

    speed: tuple[float, float] = (0.30, 0.20)
    cost: tuple[float, float] = (0.30, 0.15)
    comfort: tuple[float, float] = (0.25, 0.15)
    environment: tuple[float, float] = (0.25, 0.15)
    reliability: float = 0.20
    accessibility: tuple[float, float] = (0.30, 0.10)

    def resolve(self, prefs: UserPreferences) -> dict[str, float]:
        def pick(pair: tuple[float, float], boosted: bool) -> float:
            return pair[0] if boosted else pair[1]

        return {
            "speed": pick(self.speed, prefs.prioritize_speed),
            "cost": pick(self.cost, prefs.prioritize_cost),
            "comfort": pick(self.comfort, prefs.prioritize_comfort),
            "environment": pick(self.environment, prefs.prioritize_environment),
            "reliability": self.reliability,
            "accessibility": pick(self.accessibility, bool(prefs.accessibility_needs)),
        }


class PlanRanker:
    """Scores plans against rider preferences and keeps the best few.

    The reliability term averages the legs, unlike ``JourneyPlan.reliability``
    which keeps the worst leg for display.
    """

    def __init__(
        self,
        weights: ScoringWeights | None = None,
        max_results: int = MAX_RESULTS,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.max_results = max_results

    def score(self, segments: Sequence[JourneySegment], prefs: UserPreferences) -> float:
        w = self.weights.resolve(prefs)
        n = len(segments)
        total_duration = sum(s.duration for s in segments)
        total_cost = sum(s.cost for s in segments)
        total_emissions = sum(s.emissions for s in segments)
        avg_comfort = sum(s.comfort for s in segments) / n
        avg_reliability = sum(s.reliability for s in segments) / n
        min_accessibility = min(s.accessibility for s in segments)

        score = (
            w["speed"] * max(0.0, (DURATION_CEILING_MIN - total_duration) / DURATION_CEILING_MIN)
            + w["cost"] * max(0.0, (COST_CEILING - total_cost) / COST_CEILING)
            + w["environment"] * max(0.0, (EMISSIONS_CEILING_G - total_emissions) / EMISSIONS_CEILING_G)
            + w["comfort"] * (avg_comfort / 10)
            + w["reliability"] * avg_reliability
            + w["accessibility"] * (min_accessibility / 10)
        )
        return min(1.0, max(0.0, score))

    def rank(self, plans: Sequence[JourneyPlan], prefs: UserPreferences) -> list[JourneyPlan]:
        scored = [
            replace(p, match_score=self.score(p.segments, prefs))
            for p in plans
            if self._admissible(p, prefs)
        ]
        # sorted() is stable: equal scores keep assembly order
        ranked = sorted(scored, key=lambda p: p.match_score, reverse=True)
        logger.debug(
            "Ranked %d/%d admissible plans, keeping %d",
            len(scored), len(plans), min(len(ranked), self.max_results),
        )
        return ranked[: self.max_results]

    @staticmethod
    def _admissible(plan: JourneyPlan, prefs: UserPreferences) -> bool:
        if plan.total_cost > prefs.max_cost:
            return False
        if prefs.real_time_updates_required:
            return all(s.real_time_updates for s in plan.segments)
        return True
