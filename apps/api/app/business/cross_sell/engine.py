from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from app.business.cross_sell.errors import MatrixTimeoutError
from app.business.cross_sell.records import (
    BusinessUnitRecord,
    ClientRecord,
    EngagementRecord,
    EntitySnapshot,
    ServiceRecord,
)


ClientScope = Callable[[ClientRecord], bool]
TargetScope = Callable[[BusinessUnitRecord], bool]


@dataclass(slots=True)
class SnapshotIndex:
    """Lookup tables built once per query so enumeration never rescans the snapshot."""

    clients: list[ClientRecord] = field(default_factory=list)
    business_units: list[BusinessUnitRecord] = field(default_factory=list)
    business_units_by_id: dict[str, BusinessUnitRecord] = field(default_factory=dict)
    services_by_id: dict[str, ServiceRecord] = field(default_factory=dict)
    services_by_business_unit: dict[str, list[ServiceRecord]] = field(default_factory=dict)
    engagements_by_client: dict[str, list[EngagementRecord]] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, snapshot: EntitySnapshot) -> SnapshotIndex:
        business_units = [unit for unit in snapshot.business_units if unit.is_active]
        services_by_business_unit: dict[str, list[ServiceRecord]] = defaultdict(list)
        for service in snapshot.services:
            if service.is_active:
                services_by_business_unit[service.business_unit_id].append(service)
        engagements_by_client: dict[str, list[EngagementRecord]] = defaultdict(list)
        for engagement in snapshot.engagements:
            engagements_by_client[engagement.client_id].append(engagement)

        return cls(
            clients=[client for client in snapshot.clients if client.is_active],
            business_units=business_units,
            business_units_by_id={unit.id: unit for unit in business_units},
            services_by_id={service.id: service for service in snapshot.services},
            services_by_business_unit=dict(services_by_business_unit),
            engagements_by_client=dict(engagements_by_client),
        )


@dataclass(frozen=True, slots=True)
class ExistingEngagement:
    services: tuple[ServiceRecord, ...] = ()
    last_engagement_date: datetime | None = None

    @property
    def service_ids(self) -> frozenset[str]:
        return frozenset(service.id for service in self.services)


def resolve_existing_engagement(client_id: str, index: SnapshotIndex) -> ExistingEngagement:
    services: list[ServiceRecord] = []
    seen: set[str] = set()
    last_engagement_date: datetime | None = None

    for engagement in index.engagements_by_client.get(client_id, []):
        if engagement.updated_at is not None and (
            last_engagement_date is None or engagement.updated_at > last_engagement_date
        ):
            last_engagement_date = engagement.updated_at
        service = index.services_by_id.get(engagement.service_id)
        if service is None or service.id in seen:
            continue
        seen.add(service.id)
        services.append(service)

    return ExistingEngagement(services=tuple(services), last_engagement_date=last_engagement_date)


@dataclass(frozen=True, slots=True)
class Candidate:
    client: ClientRecord
    source_business_unit: BusinessUnitRecord
    target_business_unit: BusinessUnitRecord
    existing: ExistingEngagement
    potential_services: tuple[ServiceRecord, ...]


def candidates_for_client(
    client: ClientRecord,
    index: SnapshotIndex,
    targets: Sequence[BusinessUnitRecord],
) -> list[Candidate]:
    source = index.business_units_by_id.get(client.primary_business_unit_id or "")
    if source is None:
        return []

    existing = resolve_existing_engagement(client.id, index)
    existing_ids = existing.service_ids
    candidates: list[Candidate] = []
    for target in targets:
        if target.id == source.id:
            continue
        potential = tuple(
            service
            for service in index.services_by_business_unit.get(target.id, [])
            if service.id not in existing_ids
        )
        if not potential:
            continue
        candidates.append(
            Candidate(
                client=client,
                source_business_unit=source,
                target_business_unit=target,
                existing=existing,
                potential_services=potential,
            )
        )
    return candidates


def enumerate_candidates(
    index: SnapshotIndex,
    *,
    client_scope: ClientScope | None = None,
    target_scope: TargetScope | None = None,
    deadline: float | None = None,
    timeout_seconds: float | None = None,
    workers: int = 0,
) -> list[Candidate]:
    """Pair every in-scope client with every other active unit that still has something to offer.

    ``deadline`` is a ``time.monotonic()`` value checked before each client.
    With ``workers > 1`` clients are processed on a thread pool; output order is
    the same as the sequential traversal.
    """
    clients = [client for client in index.clients if client_scope is None or client_scope(client)]
    targets = [unit for unit in index.business_units if target_scope is None or target_scope(unit)]

    def process(position: int, client: ClientRecord) -> list[Candidate]:
        if deadline is not None and time.monotonic() > deadline:
            raise MatrixTimeoutError(timeout_seconds or 0.0, position)
        return candidates_for_client(client, index, targets)

    if workers > 1 and len(clients) > 1:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cross-sell") as pool:
            per_client = list(pool.map(process, range(len(clients)), clients))
    else:
        per_client = [process(position, client) for position, client in enumerate(clients)]

    return [candidate for batch in per_client for candidate in batch]
