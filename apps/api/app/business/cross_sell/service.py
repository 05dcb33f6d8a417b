from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass

from opentelemetry import trace

from app.business.cross_sell.engine import Candidate, SnapshotIndex, enumerate_candidates
from app.business.cross_sell.errors import CrossSellMatrixError, MatrixTimeoutError, SnapshotReadError
from app.business.cross_sell.filters import client_in_scope, run_pipeline, target_in_scope
from app.business.cross_sell.records import ServiceRecord
from app.business.cross_sell.repository import SnapshotReader
from app.business.cross_sell.schemas import (
    BusinessUnitMatrixSummary,
    CrossSellMatrixItem,
    MatrixFilters,
    MatrixSummary,
    ServiceSummary,
    parse_score,
)
from app.business.cross_sell.scoring import OpportunityScorer, build_relationship_strategy
from app.context import get_correlation_id
from app.core.config import get_settings
from app.metrics import observe_matrix_query


logger = logging.getLogger("app.cross_sell")
tracer = trace.get_tracer("app.cross_sell")


def _service_summary(service: ServiceRecord) -> ServiceSummary:
    return ServiceSummary(
        id=service.id,
        name=service.name,
        category=service.category,
        description=service.description,
    )


def _matrix_item(candidate: Candidate, score: int) -> CrossSellMatrixItem:
    client = candidate.client
    return CrossSellMatrixItem(
        client_id=client.id,
        client_name=client.name,
        client_industry=client.industry,
        client_region=client.region,
        source_business_unit_id=candidate.source_business_unit.id,
        source_business_unit_name=candidate.source_business_unit.name,
        target_business_unit_id=candidate.target_business_unit.id,
        target_business_unit_name=candidate.target_business_unit.name,
        potential_services=[_service_summary(service) for service in candidate.potential_services],
        existing_services=[_service_summary(service) for service in candidate.existing.services],
        opportunity_score=score,
        last_engagement_date=candidate.existing.last_engagement_date,
    )


@dataclass(slots=True)
class CrossSellMatrixService:
    """Read-only query facade over the cross-sell matrix.

    Every entry point takes the snapshot reader explicitly and computes from a
    fresh snapshot, so concurrent calls share nothing. ``scorer``,
    ``timeout_seconds`` and ``parallel_workers`` fall back to settings when unset.
    """

    scorer: OpportunityScorer | None = None
    timeout_seconds: float | None = None
    parallel_workers: int | None = None

    def generate_matrix(
        self,
        reader: SnapshotReader,
        filters: MatrixFilters | None = None,
        *,
        timeout_seconds: float | None = None,
        entry_point: str = "matrix",
    ) -> list[CrossSellMatrixItem]:
        settings = get_settings()
        filters = filters or MatrixFilters()
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        if timeout is None:
            timeout = settings.matrix_timeout_seconds
        workers = self.parallel_workers if self.parallel_workers is not None else settings.matrix_parallel_workers
        scorer = self.scorer or OpportunityScorer(
            relationship=build_relationship_strategy(
                settings.matrix_relationship_strategy,
                points=settings.matrix_relationship_points,
                seed=settings.matrix_relationship_seed,
            )
        )

        started = time.perf_counter()
        deadline = time.monotonic() + timeout if timeout and timeout > 0 else None
        with tracer.start_as_current_span("cross_sell.matrix.generate") as span:
            span.set_attribute("entry_point", entry_point)
            correlation_id = get_correlation_id()
            if correlation_id:
                span.set_attribute("correlation_id", correlation_id)
            try:
                snapshot = reader.read(filters)
                index = SnapshotIndex.from_snapshot(snapshot)
                candidates = enumerate_candidates(
                    index,
                    client_scope=lambda client: client_in_scope(client, filters),
                    target_scope=lambda unit: target_in_scope(unit, filters),
                    deadline=deadline,
                    timeout_seconds=timeout,
                    workers=workers,
                )
                items = [
                    _matrix_item(
                        candidate,
                        scorer.score(
                            candidate.client,
                            candidate.source_business_unit,
                            candidate.target_business_unit,
                            candidate.existing.services,
                            candidate.potential_services,
                        ),
                    )
                    for candidate in candidates
                ]
                result = run_pipeline(items, filters)
            except CrossSellMatrixError as exc:
                duration = time.perf_counter() - started
                outcome = "timeout" if isinstance(exc, MatrixTimeoutError) else "error"
                observe_matrix_query(entry_point, outcome, duration)
                if isinstance(exc, SnapshotReadError):
                    logger.exception(
                        "cross_sell.snapshot.read_failed",
                        extra={"entry_point": entry_point, "error": str(exc)},
                    )
                else:
                    logger.warning(
                        "cross_sell.matrix.failed",
                        extra={"entry_point": entry_point, "error": str(exc)},
                    )
                raise
            span.set_attribute("item_count", len(result))

        duration = time.perf_counter() - started
        observe_matrix_query(entry_point, "success", duration, len(result))
        logger.info(
            "cross_sell.matrix.generated",
            extra={
                "entry_point": entry_point,
                "item_count": len(result),
                "filters": filters.model_dump(exclude_none=True),
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return result

    def matrix_for_client(self, reader: SnapshotReader, client_id: str) -> list[CrossSellMatrixItem]:
        return self.generate_matrix(reader, MatrixFilters.build(client_id=client_id), entry_point="client")

    def matrix_for_source_business_unit(self, reader: SnapshotReader, business_unit_id: str) -> list[CrossSellMatrixItem]:
        return self.generate_matrix(
            reader,
            MatrixFilters.build(source_business_unit_id=business_unit_id),
            entry_point="source_business_unit",
        )

    def matrix_for_target_business_unit(self, reader: SnapshotReader, business_unit_id: str) -> list[CrossSellMatrixItem]:
        return self.generate_matrix(
            reader,
            MatrixFilters.build(target_business_unit_id=business_unit_id),
            entry_point="target_business_unit",
        )

    def matrix_for_industry(self, reader: SnapshotReader, industry: str) -> list[CrossSellMatrixItem]:
        return self.generate_matrix(reader, MatrixFilters.build(client_industry=industry), entry_point="industry")

    def matrix_for_region(self, reader: SnapshotReader, region: str) -> list[CrossSellMatrixItem]:
        return self.generate_matrix(reader, MatrixFilters.build(client_region=region), entry_point="region")

    def high_opportunity_matrix(self, reader: SnapshotReader, min_score: int | None = None) -> list[CrossSellMatrixItem]:
        threshold = parse_score("minScore", min_score)
        if threshold is None:
            threshold = get_settings().matrix_high_opportunity_threshold
        return self.generate_matrix(
            reader,
            MatrixFilters.build(min_opportunity_score=threshold),
            entry_point="high_opportunity",
        )

    def matrix_summary(
        self,
        reader: SnapshotReader,
        filters: MatrixFilters | None = None,
        *,
        high_opportunity_threshold: int | None = None,
    ) -> MatrixSummary:
        threshold = parse_score("highOpportunityThreshold", high_opportunity_threshold)
        if threshold is None:
            threshold = get_settings().matrix_high_opportunity_threshold
        items = self.generate_matrix(reader, filters, entry_point="summary")

        grouped: dict[str, list[CrossSellMatrixItem]] = defaultdict(list)
        for item in items:
            grouped[item.target_business_unit_id].append(item)

        by_target = [
            BusinessUnitMatrixSummary(
                business_unit_id=unit_id,
                business_unit_name=unit_items[0].target_business_unit_name,
                item_count=len(unit_items),
                average_score=round(sum(entry.opportunity_score for entry in unit_items) / len(unit_items), 2),
            )
            for unit_id, unit_items in grouped.items()
        ]
        by_target.sort(key=lambda entry: (-entry.item_count, entry.business_unit_name))

        return MatrixSummary(
            total_items=len(items),
            average_score=round(sum(item.opportunity_score for item in items) / len(items), 2) if items else 0.0,
            high_opportunity_count=sum(1 for item in items if item.opportunity_score >= threshold),
            high_opportunity_threshold=threshold,
            by_target_business_unit=by_target,
        )


cross_sell_matrix_service = CrossSellMatrixService()
