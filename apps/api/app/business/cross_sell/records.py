from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class BusinessUnitRecord:
    id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class ClientRecord:
    id: str
    name: str
    primary_business_unit_id: str | None
    industry: str | None = None
    region: str | None = None
    annual_revenue: Decimal | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class ServiceRecord:
    id: str
    name: str
    business_unit_id: str
    category: str | None = None
    description: str | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class EngagementRecord:
    """A client-to-service link, taken from either an opportunity or an engagement row."""

    client_id: str
    service_id: str
    updated_at: datetime | None = None
    source: str = "opportunity"


@dataclass(frozen=True, slots=True)
class EntitySnapshot:
    clients: tuple[ClientRecord, ...] = field(default_factory=tuple)
    business_units: tuple[BusinessUnitRecord, ...] = field(default_factory=tuple)
    services: tuple[ServiceRecord, ...] = field(default_factory=tuple)
    engagements: tuple[EngagementRecord, ...] = field(default_factory=tuple)
