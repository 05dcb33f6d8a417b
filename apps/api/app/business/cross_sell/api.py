from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.business.cross_sell.errors import CrossSellMatrixError, SnapshotReadError
from app.business.cross_sell.repository import SnapshotReader, SqlAlchemySnapshotReader
from app.business.cross_sell.schemas import (
    ErrorResponse,
    MatrixFilters,
    MatrixResponse,
    MatrixSummaryResponse,
    parse_score,
)
from app.business.cross_sell.service import cross_sell_matrix_service
from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.config import get_settings
from app.core.database import get_db
from app.core.rbac import ensure_business_unit_access, require_cross_sell_view


router = APIRouter(prefix="/api/cross-sell-matrix", tags=["cross_sell.matrix"])


def get_snapshot_reader(db: Session = Depends(get_db)) -> SnapshotReader:
    return SqlAlchemySnapshotReader(db, include_engagements=get_settings().matrix_include_engagements)


def error_response(request: Request, *, status_code: int, message: str, error: str) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorResponse(message=message, error=error, correlation_id=correlation_id)
    return JSONResponse(status_code=status_code, content=payload.model_dump())


def matrix_error_response(request: Request, exc: CrossSellMatrixError, message: str | None = None) -> JSONResponse:
    # Route wording applies to storage failures only; filter and timeout errors keep their own.
    if not isinstance(exc, SnapshotReadError) or message is None:
        message = exc.message
    return error_response(request, status_code=exc.status_code, message=message, error=str(exc))


def forbidden_response(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(request, status_code=exc.status_code, message="Access denied", error=str(exc.detail))


@router.get("", response_model=MatrixResponse)
def get_matrix(
    request: Request,
    client_id: str | None = Query(default=None, alias="clientId"),
    client_industry: str | None = Query(default=None, alias="clientIndustry"),
    client_region: str | None = Query(default=None, alias="clientRegion"),
    source_business_unit_id: str | None = Query(default=None, alias="sourceBusinessUnitId"),
    current_business_unit_id: str | None = Query(default=None, alias="currentBusinessUnitId", deprecated=True),
    target_business_unit_id: str | None = Query(default=None, alias="targetBusinessUnitId"),
    min_opportunity_score: str | None = Query(default=None, alias="minOpportunityScore"),
    max_opportunity_score: str | None = Query(default=None, alias="maxOpportunityScore"),
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        filters = MatrixFilters.from_query(
            {
                "clientId": client_id,
                "clientIndustry": client_industry,
                "clientRegion": client_region,
                "sourceBusinessUnitId": source_business_unit_id,
                "currentBusinessUnitId": current_business_unit_id,
                "targetBusinessUnitId": target_business_unit_id,
                "minOpportunityScore": min_opportunity_score,
                "maxOpportunityScore": max_opportunity_score,
            }
        )
        return MatrixResponse(data=cross_sell_matrix_service.generate_matrix(reader, filters))
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(request, exc)


@router.get("/high-opportunity", response_model=MatrixResponse)
def get_high_opportunity_matrix(
    request: Request,
    min_score: str | None = Query(default=None, alias="minScore"),
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        threshold = parse_score("minScore", min_score)
        return MatrixResponse(data=cross_sell_matrix_service.high_opportunity_matrix(reader, threshold))
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(request, exc, "Failed to generate high opportunity cross-sell matrix")


@router.get("/summary", response_model=MatrixSummaryResponse)
def get_matrix_summary(
    request: Request,
    client_industry: str | None = Query(default=None, alias="clientIndustry"),
    client_region: str | None = Query(default=None, alias="clientRegion"),
    source_business_unit_id: str | None = Query(default=None, alias="sourceBusinessUnitId"),
    target_business_unit_id: str | None = Query(default=None, alias="targetBusinessUnitId"),
    min_opportunity_score: str | None = Query(default=None, alias="minOpportunityScore"),
    high_opportunity_threshold: str | None = Query(default=None, alias="highOpportunityThreshold"),
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixSummaryResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        filters = MatrixFilters.from_query(
            {
                "clientIndustry": client_industry,
                "clientRegion": client_region,
                "sourceBusinessUnitId": source_business_unit_id,
                "targetBusinessUnitId": target_business_unit_id,
                "minOpportunityScore": min_opportunity_score,
            }
        )
        threshold = parse_score("highOpportunityThreshold", high_opportunity_threshold)
        summary = cross_sell_matrix_service.matrix_summary(reader, filters, high_opportunity_threshold=threshold)
        return MatrixSummaryResponse(data=summary)
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(request, exc, "Failed to summarize cross-sell matrix")


@router.get("/client/{client_id}", response_model=MatrixResponse)
def get_matrix_for_client(
    request: Request,
    client_id: str,
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        return MatrixResponse(data=cross_sell_matrix_service.matrix_for_client(reader, client_id))
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(request, exc, f"Failed to generate cross-sell matrix for client with ID {client_id}")


@router.get("/business-unit/source/{business_unit_id}", response_model=MatrixResponse)
def get_matrix_for_source_business_unit(
    request: Request,
    business_unit_id: str,
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        ensure_business_unit_access(user, business_unit_id)
        return MatrixResponse(data=cross_sell_matrix_service.matrix_for_source_business_unit(reader, business_unit_id))
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(
            request,
            exc,
            f"Failed to generate cross-sell matrix for source business unit with ID {business_unit_id}",
        )


@router.get("/business-unit/target/{business_unit_id}", response_model=MatrixResponse)
def get_matrix_for_target_business_unit(
    request: Request,
    business_unit_id: str,
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        ensure_business_unit_access(user, business_unit_id)
        return MatrixResponse(data=cross_sell_matrix_service.matrix_for_target_business_unit(reader, business_unit_id))
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(
            request,
            exc,
            f"Failed to generate cross-sell matrix for target business unit with ID {business_unit_id}",
        )


@router.get("/industry/{industry}", response_model=MatrixResponse)
def get_matrix_for_industry(
    request: Request,
    industry: str,
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        return MatrixResponse(data=cross_sell_matrix_service.matrix_for_industry(reader, industry))
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(request, exc, f"Failed to generate cross-sell matrix for industry {industry}")


@router.get("/region/{region}", response_model=MatrixResponse)
def get_matrix_for_region(
    request: Request,
    region: str,
    reader: SnapshotReader = Depends(get_snapshot_reader),
    user: AuthUser = Depends(get_auth_user),
) -> MatrixResponse | JSONResponse:
    try:
        require_cross_sell_view(user)
        return MatrixResponse(data=cross_sell_matrix_service.matrix_for_region(reader, region))
    except HTTPException as exc:
        return forbidden_response(request, exc)
    except CrossSellMatrixError as exc:
        return matrix_error_response(request, exc, f"Failed to generate cross-sell matrix for region {region}")
