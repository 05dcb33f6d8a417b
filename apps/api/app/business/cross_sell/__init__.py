from app.business.cross_sell.api import router
from app.business.cross_sell.errors import (
    CrossSellMatrixError,
    InvalidMatrixFilterError,
    MatrixTimeoutError,
    SnapshotReadError,
)
from app.business.cross_sell.records import (
    BusinessUnitRecord,
    ClientRecord,
    EngagementRecord,
    EntitySnapshot,
    ServiceRecord,
)
from app.business.cross_sell.repository import InMemorySnapshotReader, SnapshotReader, SqlAlchemySnapshotReader
from app.business.cross_sell.schemas import CrossSellMatrixItem, MatrixFilters, MatrixSummary, ServiceSummary
from app.business.cross_sell.scoring import (
    EngagementShareRelationship,
    FixedRelationship,
    OpportunityScorer,
    RandomRelationship,
)
from app.business.cross_sell.service import CrossSellMatrixService, cross_sell_matrix_service

__all__ = [
    "router",
    "CrossSellMatrixError",
    "InvalidMatrixFilterError",
    "MatrixTimeoutError",
    "SnapshotReadError",
    "BusinessUnitRecord",
    "ClientRecord",
    "EngagementRecord",
    "EntitySnapshot",
    "ServiceRecord",
    "SnapshotReader",
    "InMemorySnapshotReader",
    "SqlAlchemySnapshotReader",
    "CrossSellMatrixItem",
    "MatrixFilters",
    "MatrixSummary",
    "ServiceSummary",
    "OpportunityScorer",
    "FixedRelationship",
    "EngagementShareRelationship",
    "RandomRelationship",
    "CrossSellMatrixService",
    "cross_sell_matrix_service",
]
