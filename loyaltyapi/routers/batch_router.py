import logging

from fastapi import APIRouter, Depends

from loyaltyapi.deps import (
    get_point_service,
    get_reconciliation_service,
    get_voucher_service,
)
from loyaltyapi.schemas.points import PointsIntegrityCheckResponse
from loyaltyapi.schemas.reports import ReportRecoveryResponse
from loyaltyapi.schemas.vouchers import VoucherExpirySweepResponse
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.reconciliation_service import ReconciliationService
from loyaltyapi.services.voucher_service import VoucherService
from loyaltyapi.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/batch",
    tags=["batch"],
)


@router.post("/vouchers/expire", response_model=VoucherExpirySweepResponse)
def expire_vouchers(
    voucher_service: VoucherService = Depends(get_voucher_service),
) -> VoucherExpirySweepResponse:
    """유효기간이 지난 active 바우처 일괄 만료 (스케줄러가 주기적으로 호출)"""
    now = utc_now()
    expired_count = voucher_service.expire_due(now)
    return VoucherExpirySweepResponse(expired_count=expired_count, swept_at=now)


@router.post("/reports/recover", response_model=ReportRecoveryResponse)
def recover_reports(
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReportRecoveryResponse:
    """지급은 되었으나 종료되지 않은 신고 마무리 (재지급 없음)"""
    reports = reconciliation_service.recover_half_applied()
    return ReportRecoveryResponse(recovered_count=len(reports), reports=reports)


@router.get("/integrity", response_model=PointsIntegrityCheckResponse)
def verify_global_integrity(
    point_service: PointService = Depends(get_point_service),
) -> PointsIntegrityCheckResponse:
    """전체 사용자 원장/잔액 캐시 정합성 검증"""
    return point_service.verify_global_integrity()
