import json

import pytest

from rescue_ops.aggregation import (
    EMPTY_SUMMARY,
    FALLBACK_ACTION,
    FALLBACK_SUMMARY,
    UNAVAILABLE,
    AggregationEngine,
    extract_json,
    summarize_cluster,
)
from rescue_ops.errors import ExternalServiceError
from rescue_ops.models import Coordinates, HelpRequest, Priority, Provenance


class ScriptedEnrichment:
    def __init__(self, answer: str) -> None:
        self.answer = answer
        self.prompts = []

    def generate(self, prompt, *, timeout):
        self.prompts.append(prompt)
        return self.answer


class FailingEnrichment:
    def generate(self, prompt, *, timeout):
        raise ExternalServiceError("quota exceeded")


def _requests():
    return [
        HelpRequest(
            id="r1",
            requester_id="u1",
            location=Coordinates(14.60, 120.98),
            type="fire",
            injury_level="critical",
            people_affected=10,
            description="Apartment fire",
        ),
        HelpRequest(id="r2", requester_id="u2", location=Coordinates(14.61, 120.99), type="flooding"),
    ]


def _cluster(request_ids, **overrides):
    cluster = {
        "requestIds": request_ids,
        "priority": "HIGH",
        "urgencyScore": 7.6,
        "combinedDescription": "Fire and flooding on the same block",
        "centroidLocation": {"lat": 14.605, "lng": 120.985},
        "requiredResources": ["fire_truck", "boats"],
        "estimatedVictimsCount": 11,
        "recommendedAction": "Send fire and boat teams",
    }
    cluster.update(overrides)
    return cluster


def test_empty_input_needs_no_provider() -> None:
    engine = AggregationEngine(FailingEnrichment())
    result = engine.aggregate([])

    assert result.clusters == []
    assert result.summary == EMPTY_SUMMARY
    assert result.provenance is Provenance.ESTIMATED


def test_without_provider_each_request_gets_a_scored_cluster() -> None:
    result = AggregationEngine().aggregate(_requests())

    assert result.provenance is Provenance.ESTIMATED
    assert result.summary == FALLBACK_SUMMARY
    fire, flood = result.clusters
    assert fire.member_request_ids == frozenset({"r1"})
    assert fire.urgency_score == 10
    assert fire.priority is Priority.CRITICAL
    assert fire.estimated_victims_count == 10
    assert fire.recommended_action == FALLBACK_ACTION
    assert fire.centroid == Coordinates(14.60, 120.98)
    assert {"fire_truck", "medical_team"} <= fire.required_resources
    assert flood.urgency_score == 5
    assert flood.priority is Priority.MEDIUM


def test_provider_failure_uses_fallback() -> None:
    result = AggregationEngine(FailingEnrichment()).aggregate(_requests())

    assert result.provenance is Provenance.FALLBACK
    assert [c.urgency_score for c in result.clusters] == [10, 5]


def test_live_answer_resolves_indices_and_ids() -> None:
    answer = "Here is the plan:\n" + json.dumps(
        {"aggregated": [_cluster([0, "r2"])], "summary": "One combined incident"}
    ) + "\nStay safe."
    provider = ScriptedEnrichment(answer)

    result = AggregationEngine(provider).aggregate(_requests())

    assert result.provenance is Provenance.LIVE
    assert result.summary == "One combined incident"
    (cluster,) = result.clusters
    assert cluster.member_request_ids == frozenset({"r1", "r2"})
    assert cluster.priority is Priority.HIGH
    assert cluster.urgency_score == 8
    assert cluster.centroid == Coordinates(14.605, 120.985)
    assert "Request 0 (id=r1)" in provider.prompts[0]


def test_prose_answer_is_kept_as_summary() -> None:
    result = AggregationEngine(ScriptedEnrichment("Send everyone to the school gym.")).aggregate(_requests())

    assert result.provenance is Provenance.UNSTRUCTURED
    assert result.clusters == []
    assert result.summary == "Send everyone to the school gym."


@pytest.mark.parametrize(
    "payload",
    [
        {"aggregated": [_cluster([7])]},
        {"aggregated": [_cluster(["missing"])]},
        {"aggregated": [_cluster([0], urgencyScore=42)]},
        {"aggregated": [_cluster([0], priority="URGENT")]},
        {"clusters": []},
    ],
)
def test_answer_with_wrong_shape_is_unstructured(payload) -> None:
    answer = json.dumps(payload)
    result = AggregationEngine(ScriptedEnrichment(answer)).aggregate(_requests())

    assert result.provenance is Provenance.UNSTRUCTURED
    assert result.clusters == []
    assert result.summary == answer


def test_malformed_json_uses_fallback() -> None:
    result = AggregationEngine(ScriptedEnrichment('{"aggregated": [}')).aggregate(_requests())

    assert result.provenance is Provenance.FALLBACK
    assert len(result.clusters) == 2


def test_extract_json() -> None:
    assert extract_json('noise {"a": 1} tail') == {"a": 1}
    assert extract_json("no braces") is None
    with pytest.raises(json.JSONDecodeError):
        extract_json("{not json}")


def test_context_and_strategy_answers() -> None:
    requests = _requests()
    summary = summarize_cluster(requests, ["boat-1"])

    assert AggregationEngine().analyze_context(requests[0], requests[1:]) == {"error": UNAVAILABLE}
    assert AggregationEngine(FailingEnrichment()).generate_strategy(summary) == {"error": "quota exceeded"}
    assert AggregationEngine(ScriptedEnrichment("Evacuate north")).analyze_context(requests[0], []) == {
        "suggestions": "Evacuate north"
    }
    assert AggregationEngine(ScriptedEnrichment('{"sequence": ["r1"]}')).generate_strategy(summary) == {
        "sequence": ["r1"]
    }


def test_summarize_cluster() -> None:
    summary = summarize_cluster(_requests(), ["boat-1", "medic-2"])

    assert summary.total_people == 11
    assert summary.request_count == 2
    assert summary.hazard_types == ["fire", "flooding"]
    assert summary.available_resources == ["boat-1", "medic-2"]
    assert summary.geographic_spread_km > 1.0


class RaisingEnrichment:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def generate(self, prompt, *, timeout):
        raise self.exc


@pytest.mark.parametrize(
    "exc",
    [ConnectionError("connection reset"), KeyError("candidates"), ValueError("bad body"), RuntimeError("closed")],
)
def test_any_provider_exception_uses_fallback(exc) -> None:
    engine = AggregationEngine(RaisingEnrichment(exc))
    requests = _requests()

    result = engine.aggregate(requests)

    assert result.provenance is Provenance.FALLBACK
    assert result.summary == FALLBACK_SUMMARY
    assert [c.urgency_score for c in result.clusters] == [10, 5]
    assert "error" in engine.analyze_context(requests[0], requests[1:])
    assert "error" in engine.generate_strategy(summarize_cluster(requests))


def test_trailing_prose_with_braces_keeps_live_answer() -> None:
    answer = json.dumps({"aggregated": [_cluster([0, 1])], "summary": "Combined"}) + (
        "\nNote: keep {fire} and {flood} teams on separate radio channels."
    )

    result = AggregationEngine(ScriptedEnrichment(answer)).aggregate(_requests())

    assert result.provenance is Provenance.LIVE
    assert result.summary == "Combined"
    assert result.clusters[0].member_request_ids == frozenset({"r1", "r2"})


def test_extract_json_ignores_text_after_the_object() -> None:
    assert extract_json('Plan: {"a": {"b": 2}} and then {more}') == {"a": {"b": 2}}
