"""
누락 포인트 신고 API 라우터

사용자:
- POST /reports: 신고 접수

운영자:
- GET /reports?status=: 상태별 목록 (최신 접수순)
- GET /reports/{report_id}: 단건 조회
- POST /reports/{report_id}/investigate: 조사 시작
- POST /reports/{report_id}/resolve: 승인(포인트 지급) 또는 반려
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from loyaltyapi.deps import get_query_service, get_reconciliation_service
from loyaltyapi.models.reports import ReportStatusEnum
from loyaltyapi.schemas.pagination import PaginationLimits
from loyaltyapi.schemas.reports import (
    MissingPointsReportResponse,
    ReportFileRequest,
    ReportListResponse,
    ReportResolveRequest,
)
from loyaltyapi.services.query_service import LoyaltyQueryService
from loyaltyapi.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", response_model=MissingPointsReportResponse, status_code=201)
def file_report(
    request: ReportFileRequest,
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
) -> MissingPointsReportResponse:
    """누락 포인트 신고 접수 (409: 같은 주문의 처리 중/승인된 신고가 있음)"""
    return reconciliation_service.file(
        user_id=request.user_id,
        order_reference=request.order_reference,
        expected_points=request.expected_points,
        reason=request.reason,
        order_date=request.order_date,
    )


@router.get("", response_model=ReportListResponse)
def list_reports(
    status: Optional[ReportStatusEnum] = Query(None, description="상태 필터"),
    limit: int = Query(
        PaginationLimits.REPORTS["default"],
        ge=PaginationLimits.REPORTS["min"],
        le=PaginationLimits.REPORTS["max"],
    ),
    offset: int = Query(0, ge=0),
    query_service: LoyaltyQueryService = Depends(get_query_service),
) -> ReportListResponse:
    return query_service.list_reports(status=status, limit=limit, offset=offset)


@router.get("/{report_id}", response_model=MissingPointsReportResponse)
def get_report(
    report_id: int = Path(..., ge=1),
    query_service: LoyaltyQueryService = Depends(get_query_service),
) -> MissingPointsReportResponse:
    return query_service.get_report(report_id)


@router.post("/{report_id}/investigate", response_model=MissingPointsReportResponse)
def begin_investigation(
    report_id: int = Path(..., ge=1),
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
) -> MissingPointsReportResponse:
    return reconciliation_service.begin_investigation(report_id)


@router.post("/{report_id}/resolve", response_model=MissingPointsReportResponse)
def resolve_report(
    request: ReportResolveRequest,
    report_id: int = Path(..., ge=1),
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
) -> MissingPointsReportResponse:
    """
    신고 승인/반려

    승인 시 expected_points 만큼 adjustment 가 지급되며, 같은 신고는
    몇 번을 호출해도 한 번만 지급된다.

    HTTP Status:
        200: 처리 완료
        404: 없는 신고
        409: 이미 처리된 신고 (REPORT_ALREADY_RESOLVED, details.status 에 현재 상태)
        503: 스토리지 장애 - 신고 상태를 다시 조회한 뒤 재시도
    """
    return reconciliation_service.resolve(
        report_id,
        approved=request.approved,
        operator_id=request.operator_id,
        note=request.note,
    )
