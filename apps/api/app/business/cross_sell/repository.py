from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.business.cross_sell.errors import SnapshotReadError
from app.business.cross_sell.records import (
    BusinessUnitRecord,
    ClientRecord,
    EngagementRecord,
    EntitySnapshot,
    ServiceRecord,
)
from app.business.cross_sell.schemas import MatrixFilters
from app.crm.models import BusinessUnit, Client, Engagement, Opportunity, Service


ACTIVE_ENGAGEMENT_STATUS = "Active"


class SnapshotReader(Protocol):
    def read(self, prefilter: MatrixFilters | None = None) -> EntitySnapshot: ...


@dataclass(slots=True)
class InMemorySnapshotReader:
    snapshot: EntitySnapshot

    def read(self, prefilter: MatrixFilters | None = None) -> EntitySnapshot:
        return self.snapshot


def _as_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _optional_id(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


@dataclass(slots=True)
class SqlAlchemySnapshotReader:
    """Reads the matrix inputs from the CRM tables.

    The prefilter only narrows the client and business-unit queries; the engine
    re-applies every filter, so results never depend on what is pushed down here.
    """

    session: Session
    include_engagements: bool = True

    def read(self, prefilter: MatrixFilters | None = None) -> EntitySnapshot:
        clients = self._load("clients", self._client_query(prefilter))
        business_units = self._load(
            "business units",
            select(BusinessUnit).where(BusinessUnit.is_active.is_(True)).order_by(BusinessUnit.name.asc(), BusinessUnit.id.asc()),
        )
        services = self._load("services", select(Service).order_by(Service.name.asc(), Service.id.asc()))
        opportunities = self._load("opportunities", select(Opportunity).order_by(Opportunity.updated_at.asc()))
        engagements: list[Engagement] = []
        if self.include_engagements:
            engagements = self._load(
                "engagements",
                select(Engagement)
                .where(Engagement.status == ACTIVE_ENGAGEMENT_STATUS)
                .order_by(Engagement.updated_at.asc()),
            )

        return EntitySnapshot(
            clients=tuple(self._client_record(row) for row in clients),
            business_units=tuple(
                BusinessUnitRecord(id=str(row.id), name=row.name, is_active=row.is_active) for row in business_units
            ),
            services=tuple(
                ServiceRecord(
                    id=str(row.id),
                    name=row.name,
                    business_unit_id=str(row.business_unit_id),
                    category=row.category,
                    description=row.description,
                    is_active=row.is_active,
                )
                for row in services
            ),
            engagements=tuple(
                [
                    EngagementRecord(
                        client_id=str(row.client_id),
                        service_id=str(row.service_id),
                        updated_at=_as_utc(row.updated_at),
                        source="opportunity",
                    )
                    for row in opportunities
                ]
                + [
                    EngagementRecord(
                        client_id=str(row.client_id),
                        service_id=str(row.service_id),
                        updated_at=_as_utc(row.updated_at),
                        source="engagement",
                    )
                    for row in engagements
                ]
            ),
        )

    def _load(self, collection: str, stmt: Select[Any]) -> list[Any]:
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise SnapshotReadError(collection, exc) from exc

    @staticmethod
    def _client_query(prefilter: MatrixFilters | None) -> Select[tuple[Client]]:
        stmt: Select[tuple[Client]] = select(Client).where(
            Client.is_active.is_(True),
            Client.primary_business_unit_id.is_not(None),
        )
        if prefilter is not None:
            if prefilter.client_id is not None:
                client_uuid = _as_uuid(prefilter.client_id)
                if client_uuid is None:
                    return stmt.where(Client.id.is_(None))
                stmt = stmt.where(Client.id == client_uuid)
            if prefilter.source_business_unit_id is not None:
                unit_uuid = _as_uuid(prefilter.source_business_unit_id)
                if unit_uuid is None:
                    return stmt.where(Client.id.is_(None))
                stmt = stmt.where(Client.primary_business_unit_id == unit_uuid)
            if prefilter.client_industry is not None:
                stmt = stmt.where(Client.industry == prefilter.client_industry)
            if prefilter.client_region is not None:
                stmt = stmt.where(Client.region == prefilter.client_region)
        return stmt.order_by(Client.name.asc(), Client.id.asc())

    @staticmethod
    def _client_record(row: Client) -> ClientRecord:
        return ClientRecord(
            id=str(row.id),
            name=row.name,
            primary_business_unit_id=_optional_id(row.primary_business_unit_id),
            industry=row.industry,
            region=row.region,
            annual_revenue=row.annual_revenue,
            is_active=row.is_active,
        )
