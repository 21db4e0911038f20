from __future__ import annotations

from typing import Iterable, List

from rescue_ops.models import HelpRequest, Priority

BASE_SCORE = 5
MAX_SCORE = 10
CROWD_THRESHOLD = 5
CROWD_BONUS = 2

INJURY_WEIGHTS = {
    "critical": 4,
    "severe": 3,
    "moderate": 2,
    "minor": 1,
}

HAZARD_WEIGHTS = {
    "building_collapse": 3,
    "fire": 3,
    "drowning": 3,
    "earthquake": 3,
    "landslide": 2,
}

HAZARD_RESOURCES = {
    "building_collapse": ("rescue_team", "medical_team", "heavy_equipment"),
    "fire": ("fire_truck", "paramedics", "evacuation_team"),
    "drowning": ("rescue_swimmers", "boats", "defibrillator"),
    "earthquake": ("rescue_dogs", "medical_team", "water", "shelter"),
    "landslide": ("excavators", "rescue_team", "medical_team"),
    "flooding": ("boats", "pumps", "sandbags", "water_purification"),
}

INJURY_RESOURCES = ("medical_team", "ambulance")
NO_INJURY_LEVELS = {"", "none", "unknown"}

PRIORITY_THRESHOLDS = (
    (8, Priority.CRITICAL),
    (6, Priority.HIGH),
    (4, Priority.MEDIUM),
)


class UrgencyScorer:
    """Deterministic urgency scoring used whenever enrichment is unavailable."""

    def score(self, request: HelpRequest) -> int:
        score = BASE_SCORE
        score += INJURY_WEIGHTS.get(request.injury_level, 0)
        if request.people_affected > CROWD_THRESHOLD:
            score += CROWD_BONUS
        score += HAZARD_WEIGHTS.get(request.type, 0)
        return min(score, MAX_SCORE)

    @staticmethod
    def priority_for(score: int) -> Priority:
        for threshold, priority in PRIORITY_THRESHOLDS:
            if score >= threshold:
                return priority
        return Priority.LOW

    def priority(self, request: HelpRequest) -> Priority:
        return self.priority_for(self.score(request))

    @staticmethod
    def suggest_resources(request: HelpRequest) -> List[str]:
        resources: List[str] = []
        if request.injury_level not in NO_INJURY_LEVELS:
            resources.extend(INJURY_RESOURCES)
        resources.extend(HAZARD_RESOURCES.get(request.type, ()))
        return list(dict.fromkeys(resources))

    def rank(self, requests: Iterable[HelpRequest]) -> List[HelpRequest]:
        return sorted(requests, key=self.score, reverse=True)
