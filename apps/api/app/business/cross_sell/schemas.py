from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_serializer, model_validator
from pydantic.alias_generators import to_camel

from app.business.cross_sell.errors import InvalidMatrixFilterError


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ServiceSummary(CamelModel):
    id: str
    name: str
    category: str | None = None
    description: str | None = None


class CrossSellMatrixItem(CamelModel):
    client_id: str
    client_name: str
    client_industry: str | None = None
    client_region: str | None = None
    source_business_unit_id: str
    source_business_unit_name: str
    target_business_unit_id: str
    target_business_unit_name: str
    potential_services: list[ServiceSummary] = Field(min_length=1)
    existing_services: list[ServiceSummary] = Field(default_factory=list)
    opportunity_score: int = Field(ge=0, le=100)
    last_engagement_date: datetime | None = None

    @model_serializer(mode="wrap")
    def _omit_missing_engagement_date(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        if self.last_engagement_date is None:
            data.pop("lastEngagementDate", None)
            data.pop("last_engagement_date", None)
        return data


_QUERY_ALIASES = {
    "clientId": "client_id",
    "clientIndustry": "client_industry",
    "clientRegion": "client_region",
    "sourceBusinessUnitId": "source_business_unit_id",
    "currentBusinessUnitId": "source_business_unit_id",
    "targetBusinessUnitId": "target_business_unit_id",
    "minOpportunityScore": "min_opportunity_score",
    "maxOpportunityScore": "max_opportunity_score",
}

_SCORE_FILTERS = {"min_opportunity_score", "max_opportunity_score"}
_QUERY_NAMES = {field: query for query, field in _QUERY_ALIASES.items() if query != "currentBusinessUnitId"}


def parse_score(filter_name: str, raw: str | int | None) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, int):
        value = raw
    else:
        text = raw.strip()
        if not text:
            return None
        try:
            value = int(text)
        except ValueError:
            raise InvalidMatrixFilterError(filter_name, raw, "must be an integer") from None
    if value < 0 or value > 100:
        raise InvalidMatrixFilterError(filter_name, raw, "must be between 0 and 100")
    return value


class MatrixFilters(BaseModel):
    """Conjunctive filter over matrix items; every unset field matches everything."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True)

    client_id: str | None = None
    client_industry: str | None = None
    client_region: str | None = None
    source_business_unit_id: str | None = None
    target_business_unit_id: str | None = None
    min_opportunity_score: int | None = Field(default=None, ge=0, le=100)
    max_opportunity_score: int | None = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def _check_score_range(self) -> MatrixFilters:
        if (
            self.min_opportunity_score is not None
            and self.max_opportunity_score is not None
            and self.min_opportunity_score > self.max_opportunity_score
        ):
            raise ValueError("minOpportunityScore must not exceed maxOpportunityScore")
        return self

    @classmethod
    def build(cls, **values: Any) -> MatrixFilters:
        """Construct filters, reporting constraint failures as ``InvalidMatrixFilterError``."""
        try:
            return cls(**values)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())) or "minOpportunityScore"
            filter_name = _QUERY_NAMES.get(location, location)
            raise InvalidMatrixFilterError(filter_name, first.get("input"), first.get("msg", "invalid")) from None

    @classmethod
    def from_query(cls, params: Mapping[str, str | None]) -> MatrixFilters:
        # Text filters match exactly, so values are kept as sent; only "" means absent.
        values: dict[str, Any] = {}
        for query_name, field_name in _QUERY_ALIASES.items():
            raw = params.get(query_name)
            if raw is None:
                continue
            if field_name in _SCORE_FILTERS:
                parsed = parse_score(query_name, raw)
                if parsed is not None:
                    values[field_name] = parsed
                continue
            if raw != "" and field_name not in values:
                values[field_name] = raw
        return cls.build(**values)


class MatrixResponse(BaseModel):
    success: bool = True
    data: list[CrossSellMatrixItem]


class BusinessUnitMatrixSummary(CamelModel):
    business_unit_id: str
    business_unit_name: str
    item_count: int
    average_score: float


class MatrixSummary(CamelModel):
    total_items: int
    average_score: float
    high_opportunity_count: int
    high_opportunity_threshold: int
    by_target_business_unit: list[BusinessUnitMatrixSummary] = Field(default_factory=list)


class MatrixSummaryResponse(BaseModel):
    success: bool = True
    data: MatrixSummary


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error: str
    correlation_id: str | None = None
