"""Opportunity scoring for cross-sell candidates.

The score is the sum of four independently capped factors:

* breadth: 10 points per cross-sellable service, capped at 30
* client value: 3 points per million of annual revenue, capped at 30
* category affinity: 5 points per proposed service whose category the client
  already buys, capped at 20
* relationship: supplied by a pluggable :class:`RelationshipStrategy`, clamped
  to ``[0, 20]``
"""

from __future__ import annotations

import math
import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from app.business.cross_sell.records import BusinessUnitRecord, ClientRecord, ServiceRecord


BREADTH_POINTS_PER_SERVICE = 10
BREADTH_CAP = 30
CLIENT_VALUE_POINTS_PER_MILLION = 3
CLIENT_VALUE_CAP = 30
CATEGORY_POINTS_PER_MATCH = 5
CATEGORY_AFFINITY_CAP = 20
RELATIONSHIP_CAP = 20
MAX_SCORE = BREADTH_CAP + CLIENT_VALUE_CAP + CATEGORY_AFFINITY_CAP + RELATIONSHIP_CAP


class RelationshipStrategy(Protocol):
    def __call__(
        self,
        client: ClientRecord,
        source_business_unit: BusinessUnitRecord,
        target_business_unit: BusinessUnitRecord,
        existing_services: Sequence[ServiceRecord],
        potential_services: Sequence[ServiceRecord],
    ) -> float: ...


@dataclass(frozen=True, slots=True)
class FixedRelationship:
    points: float = 10.0

    def __call__(
        self,
        client: ClientRecord,
        source_business_unit: BusinessUnitRecord,
        target_business_unit: BusinessUnitRecord,
        existing_services: Sequence[ServiceRecord],
        potential_services: Sequence[ServiceRecord],
    ) -> float:
        return self.points


@dataclass(frozen=True, slots=True)
class EngagementShareRelationship:
    """Share of the target unit's active catalogue the client already engages, scaled to the cap."""

    def __call__(
        self,
        client: ClientRecord,
        source_business_unit: BusinessUnitRecord,
        target_business_unit: BusinessUnitRecord,
        existing_services: Sequence[ServiceRecord],
        potential_services: Sequence[ServiceRecord],
    ) -> float:
        engaged = {
            service.id
            for service in existing_services
            if service.business_unit_id == target_business_unit.id and service.is_active
        }
        catalogue_size = len(engaged) + len(potential_services)
        if catalogue_size == 0:
            return 0.0
        return RELATIONSHIP_CAP * len(engaged) / catalogue_size


class RandomRelationship:
    """Uniform integer draw in ``[0, 20)``; reproducible only when seeded."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def __call__(
        self,
        client: ClientRecord,
        source_business_unit: BusinessUnitRecord,
        target_business_unit: BusinessUnitRecord,
        existing_services: Sequence[ServiceRecord],
        potential_services: Sequence[ServiceRecord],
    ) -> float:
        return float(self._rng.randrange(RELATIONSHIP_CAP))


def build_relationship_strategy(name: str, *, points: float = 10.0, seed: int | None = None) -> RelationshipStrategy:
    normalized = name.strip().lower()
    if normalized == "engagement_share":
        return EngagementShareRelationship()
    if normalized == "fixed":
        return FixedRelationship(points=points)
    if normalized == "random":
        return RandomRelationship(seed=seed)
    raise ValueError(f"Unknown relationship strategy: {name}")


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    breadth: float
    client_value: float
    category_affinity: float
    relationship: float
    total: int


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def breadth_factor(potential_services: Sequence[ServiceRecord]) -> float:
    return float(min(len(potential_services) * BREADTH_POINTS_PER_SERVICE, BREADTH_CAP))


def client_value_factor(client: ClientRecord) -> float:
    revenue = float(client.annual_revenue) if client.annual_revenue is not None else 0.0
    return _clamp(revenue / 1_000_000 * CLIENT_VALUE_POINTS_PER_MILLION, 0.0, CLIENT_VALUE_CAP)


def category_affinity_factor(
    existing_services: Sequence[ServiceRecord],
    potential_services: Sequence[ServiceRecord],
) -> float:
    # Rewards overlap with categories the client already buys, not novelty.
    existing_categories = {service.category for service in existing_services}
    matches = sum(1 for service in potential_services if service.category in existing_categories)
    return float(min(matches * CATEGORY_POINTS_PER_MATCH, CATEGORY_AFFINITY_CAP))


@dataclass(slots=True)
class OpportunityScorer:
    relationship: RelationshipStrategy = field(default_factory=EngagementShareRelationship)

    def breakdown(
        self,
        client: ClientRecord,
        source_business_unit: BusinessUnitRecord,
        target_business_unit: BusinessUnitRecord,
        existing_services: Sequence[ServiceRecord],
        potential_services: Sequence[ServiceRecord],
    ) -> ScoreBreakdown:
        breadth = breadth_factor(potential_services)
        value = client_value_factor(client)
        affinity = category_affinity_factor(existing_services, potential_services)
        relationship = _clamp(
            float(
                self.relationship(
                    client,
                    source_business_unit,
                    target_business_unit,
                    existing_services,
                    potential_services,
                )
            ),
            0.0,
            RELATIONSHIP_CAP,
        )
        total = _round_half_up(breadth + value + affinity + relationship)
        return ScoreBreakdown(
            breadth=breadth,
            client_value=value,
            category_affinity=affinity,
            relationship=relationship,
            total=int(_clamp(total, 0, MAX_SCORE)),
        )

    def score(
        self,
        client: ClientRecord,
        source_business_unit: BusinessUnitRecord,
        target_business_unit: BusinessUnitRecord,
        existing_services: Sequence[ServiceRecord],
        potential_services: Sequence[ServiceRecord],
    ) -> int:
        return self.breakdown(
            client,
            source_business_unit,
            target_business_unit,
            existing_services,
            potential_services,
        ).total
