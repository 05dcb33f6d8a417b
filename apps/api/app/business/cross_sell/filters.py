from __future__ import annotations

from collections.abc import Callable, Iterable

from app.business.cross_sell.records import BusinessUnitRecord, ClientRecord
from app.business.cross_sell.schemas import CrossSellMatrixItem, MatrixFilters


ItemRule = Callable[[CrossSellMatrixItem, MatrixFilters], bool]


def _client_rule(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return filters.client_id is None or item.client_id == filters.client_id


def _industry_rule(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return filters.client_industry is None or item.client_industry == filters.client_industry


def _region_rule(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return filters.client_region is None or item.client_region == filters.client_region


def _source_rule(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return filters.source_business_unit_id is None or item.source_business_unit_id == filters.source_business_unit_id


def _target_rule(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return filters.target_business_unit_id is None or item.target_business_unit_id == filters.target_business_unit_id


def _min_score_rule(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return filters.min_opportunity_score is None or item.opportunity_score >= filters.min_opportunity_score


def _max_score_rule(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return filters.max_opportunity_score is None or item.opportunity_score <= filters.max_opportunity_score


ITEM_RULES: tuple[ItemRule, ...] = (
    _client_rule,
    _industry_rule,
    _region_rule,
    _source_rule,
    _target_rule,
    _min_score_rule,
    _max_score_rule,
)


def matches(item: CrossSellMatrixItem, filters: MatrixFilters) -> bool:
    return all(rule(item, filters) for rule in ITEM_RULES)


def apply_filters(items: Iterable[CrossSellMatrixItem], filters: MatrixFilters | None = None) -> list[CrossSellMatrixItem]:
    if filters is None:
        return list(items)
    return [item for item in items if matches(item, filters)]


def sort_items(items: Iterable[CrossSellMatrixItem]) -> list[CrossSellMatrixItem]:
    """Highest score first. Ties keep their input order (``sorted`` is stable with ``reverse``)."""
    return sorted(items, key=lambda item: item.opportunity_score, reverse=True)


def run_pipeline(items: Iterable[CrossSellMatrixItem], filters: MatrixFilters | None = None) -> list[CrossSellMatrixItem]:
    return sort_items(apply_filters(items, filters))


def client_in_scope(client: ClientRecord, filters: MatrixFilters | None) -> bool:
    """Pre-enumeration check using only the client-side filters."""
    if filters is None:
        return True
    if filters.client_id is not None and client.id != filters.client_id:
        return False
    if filters.client_industry is not None and client.industry != filters.client_industry:
        return False
    if filters.client_region is not None and client.region != filters.client_region:
        return False
    if filters.source_business_unit_id is not None and client.primary_business_unit_id != filters.source_business_unit_id:
        return False
    return True


def target_in_scope(business_unit: BusinessUnitRecord, filters: MatrixFilters | None) -> bool:
    if filters is None or filters.target_business_unit_id is None:
        return True
    return business_unit.id == filters.target_business_unit_id
