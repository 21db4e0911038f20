from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PayloadError

from rescue_ops.geo import cluster_spread
from rescue_ops.models import (
    AggregationResult,
    ClusterSummary,
    Coordinates,
    HelpRequest,
    Priority,
    PriorityCluster,
    Provenance,
)
from rescue_ops.providers import EnrichmentProvider
from rescue_ops.scoring import UrgencyScorer

logger = logging.getLogger(__name__)

EMPTY_SUMMARY = "No open requests"
FALLBACK_SUMMARY = "Using fallback prioritization"
FALLBACK_ACTION = "Send rescue team"
UNAVAILABLE = "Enrichment unavailable"
DEFAULT_ENRICHMENT_TIMEOUT = 20.0


class CentroidPayload(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class ClusterPayload(BaseModel):
    request_ids: List[Union[int, str]] = Field(..., alias="requestIds", min_length=1)
    priority: Priority
    urgency_score: float = Field(..., alias="urgencyScore", ge=1, le=10)
    combined_description: str = Field("", alias="combinedDescription")
    centroid: CentroidPayload = Field(..., alias="centroidLocation")
    required_resources: List[str] = Field(default_factory=list, alias="requiredResources")
    estimated_victims: int = Field(1, alias="estimatedVictimsCount", ge=0)
    recommended_action: str = Field(FALLBACK_ACTION, alias="recommendedAction")


class AggregationPayload(BaseModel):
    aggregated: List[ClusterPayload]
    summary: str = ""


class UnresolvedRequestId(ValueError):
    pass


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """
    Decode the JSON object starting at the first ``{`` of ``text``.

    Anything after the object is ignored, braces included. Returns None when
    there is no ``{``; raises ``json.JSONDecodeError`` when the object is malformed.
    """
    start = text.find("{")
    if start == -1:
        return None
    data, _ = json.JSONDecoder().raw_decode(text, start)
    return data


def _describe(index: int, request: HelpRequest) -> str:
    return (
        f"Request {index} (id={request.id}): location=({request.location.lat}, {request.location.lng}), "
        f"type={request.type}, people={request.people_affected}, injuries={request.injury_level}, "
        f"accessibility={request.accessibility}, reported={request.created_at.isoformat()}, "
        f"description={request.description or 'no description'}"
    )


def aggregation_prompt(requests: Sequence[HelpRequest]) -> str:
    listing = "\n".join(_describe(index, request) for index, request in enumerate(requests))
    return (
        "Group these disaster help requests into clusters that one team can serve together and "
        "prioritize them. Answer with JSON only: "
        '{"aggregated": [{"requestIds": [<request index>], "priority": "CRITICAL|HIGH|MEDIUM|LOW", '
        '"urgencyScore": <1-10>, "combinedDescription": "", "centroidLocation": {"lat": 0, "lng": 0}, '
        '"requiredResources": [], "estimatedVictimsCount": 0, "recommendedAction": ""}], "summary": ""}\n\n'
        f"{listing}"
    )


def context_prompt(request: HelpRequest, nearby: Sequence[HelpRequest]) -> str:
    listing = "\n".join(f"- {other.type}: {other.description}" for other in nearby) or "- none"
    return (
        "Suggest immediate actions, team composition, equipment, rescue sequence and safety "
        "considerations for this request. Answer in JSON.\n"
        f"{_describe(0, request)}\nNearby requests ({len(nearby)}):\n{listing}"
    )


def strategy_prompt(summary: ClusterSummary) -> str:
    return (
        "Create a rescue strategy (resource allocation, sequence, timeline, team assignments, risks, "
        "communication plan) for this cluster. Answer in JSON.\n"
        f"Total affected people: {summary.total_people}\n"
        f"Geographic spread: {summary.geographic_spread_km:.2f} km\n"
        f"Number of requests: {summary.request_count}\n"
        f"Hazards: {', '.join(summary.hazard_types) or 'unknown'}\n"
        f"Available resources: {', '.join(summary.available_resources) or 'none'}"
    )


def summarize_cluster(requests: Sequence[HelpRequest], available_resources: Sequence[str] = ()) -> ClusterSummary:
    return ClusterSummary(
        total_people=sum(max(request.people_affected, 1) for request in requests),
        geographic_spread_km=cluster_spread([request.location for request in requests]),
        request_count=len(requests),
        hazard_types=[request.type for request in requests],
        available_resources=list(available_resources),
    )


class AggregationEngine:
    """Clusters and prioritizes open requests, with a deterministic fallback."""

    def __init__(
        self,
        enrichment: Optional[EnrichmentProvider] = None,
        scorer: Optional[UrgencyScorer] = None,
        timeout: float = DEFAULT_ENRICHMENT_TIMEOUT,
    ) -> None:
        self.enrichment = enrichment
        self.scorer = scorer or UrgencyScorer()
        self.timeout = timeout

    def aggregate(self, requests: Sequence[HelpRequest]) -> AggregationResult:
        requests = list(requests)
        if not requests:
            return AggregationResult(clusters=[], summary=EMPTY_SUMMARY, provenance=Provenance.ESTIMATED)

        if self.enrichment is None:
            return self.fallback(requests, Provenance.ESTIMATED)

        try:
            text = self.enrichment.generate(aggregation_prompt(requests), timeout=self.timeout)
            data = extract_json(text)
        except Exception as exc:
            logger.warning("Enrichment failed, using fallback prioritization: %s", exc)
            return self.fallback(requests, Provenance.FALLBACK)

        if data is None:
            return AggregationResult(clusters=[], summary=text, provenance=Provenance.UNSTRUCTURED)

        try:
            payload = AggregationPayload.model_validate(data)
            clusters = [self._from_payload(cluster, requests) for cluster in payload.aggregated]
        except (PayloadError, UnresolvedRequestId) as exc:
            logger.warning("Enrichment answer does not match the cluster shape: %s", exc)
            return AggregationResult(clusters=[], summary=text, provenance=Provenance.UNSTRUCTURED)

        return AggregationResult(clusters=clusters, summary=payload.summary, provenance=Provenance.LIVE)

    def fallback(self, requests: Sequence[HelpRequest], provenance: Provenance = Provenance.FALLBACK) -> AggregationResult:
        return AggregationResult(
            clusters=self.fallback_clusters(requests),
            summary=FALLBACK_SUMMARY,
            provenance=provenance,
        )

    def fallback_clusters(self, requests: Sequence[HelpRequest]) -> List[PriorityCluster]:
        clusters = []
        for request in requests:
            score = self.scorer.score(request)
            clusters.append(
                PriorityCluster(
                    member_request_ids=frozenset([request.id]),
                    priority=self.scorer.priority_for(score),
                    urgency_score=score,
                    centroid=request.location,
                    required_resources=frozenset(self.scorer.suggest_resources(request)),
                    estimated_victims_count=request.people_affected,
                    recommended_action=FALLBACK_ACTION,
                    combined_description=request.description,
                )
            )
        return clusters

    @staticmethod
    def _from_payload(cluster: ClusterPayload, requests: List[HelpRequest]) -> PriorityCluster:
        known = {request.id for request in requests}
        members = set()
        for ref in cluster.request_ids:
            if isinstance(ref, int) and 0 <= ref < len(requests):
                members.add(requests[ref].id)
            elif isinstance(ref, str) and ref in known:
                members.add(ref)
            else:
                raise UnresolvedRequestId(f"unknown request reference {ref!r}")

        return PriorityCluster(
            member_request_ids=frozenset(members),
            priority=cluster.priority,
            urgency_score=int(round(cluster.urgency_score)),
            centroid=Coordinates(cluster.centroid.lat, cluster.centroid.lng),
            required_resources=frozenset(cluster.required_resources),
            estimated_victims_count=cluster.estimated_victims,
            recommended_action=cluster.recommended_action,
            combined_description=cluster.combined_description,
        )

    def analyze_context(self, request: HelpRequest, nearby: Sequence[HelpRequest]) -> Dict[str, Any]:
        return self._ask(context_prompt(request, nearby), text_key="suggestions")

    def generate_strategy(self, summary: ClusterSummary) -> Dict[str, Any]:
        return self._ask(strategy_prompt(summary), text_key="strategy")

    def _ask(self, prompt: str, text_key: str) -> Dict[str, Any]:
        if self.enrichment is None:
            return {"error": UNAVAILABLE}
        try:
            text = self.enrichment.generate(prompt, timeout=self.timeout)
            data = extract_json(text)
        except Exception as exc:
            logger.warning("Enrichment request failed: %s", exc)
            return {"error": str(exc)}
        if data is None:
            return {text_key: text}
        return data
