import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from loyaltyapi.deps import get_query_service, get_voucher_service
from loyaltyapi.models.vouchers import VoucherStatusEnum
from loyaltyapi.schemas.vouchers import (
    VoucherCancelRequest,
    VoucherIssueRequest,
    VoucherListResponse,
    VoucherRedeemRequest,
    VoucherResponse,
)
from loyaltyapi.services.query_service import LoyaltyQueryService
from loyaltyapi.services.voucher_service import VoucherService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.post("", response_model=VoucherResponse, status_code=201)
def issue_voucher(
    request: VoucherIssueRequest,
    voucher_service: VoucherService = Depends(get_voucher_service),
) -> VoucherResponse:
    """
    바우처 발급 - 카탈로그 협력 시스템이 포인트 차감 후 호출

    포인트 차감과 발급을 한 번에 하려면 POST /rewards/exchange 를 사용한다.
    """
    return voucher_service.issue(
        user_id=request.user_id,
        value=request.value,
        validity_days=request.validity_days,
        redemption_reference=request.redemption_reference,
        title=request.title,
        ledger_entry_id=request.ledger_entry_id,
    )


@router.post("/redeem", response_model=VoucherResponse)
def redeem_voucher(
    request: VoucherRedeemRequest,
    voucher_service: VoucherService = Depends(get_voucher_service),
) -> VoucherResponse:
    """
    체크아웃에서 바우처 사용

    HTTP Status:
        200: 사용 완료
        404: 없는 코드
        409: 이미 사용/취소된 바우처
        410: 유효기간 만료
    """
    return voucher_service.redeem(request.code, order_reference=request.order_reference)


@router.post("/{voucher_id}/cancel", response_model=VoucherResponse)
def cancel_voucher(
    voucher_id: int = Path(..., ge=1, description="바우처 ID"),
    request: Optional[VoucherCancelRequest] = None,
    voucher_service: VoucherService = Depends(get_voucher_service),
) -> VoucherResponse:
    """관리자 바우처 취소 (active 일 때만)"""
    reason = request.reason if request else None
    return voucher_service.cancel(voucher_id, reason=reason)


@router.get("/user/{user_id}", response_model=VoucherListResponse)
def get_user_vouchers(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    status: Optional[VoucherStatusEnum] = Query(None, description="상태 필터"),
    query_service: LoyaltyQueryService = Depends(get_query_service),
) -> VoucherListResponse:
    """사용자 바우처 목록 (사용 가능 + 이력, 최근 발급순)"""
    return query_service.get_user_vouchers(user_id, status=status)


@router.get("/code/{code}", response_model=VoucherResponse)
def get_voucher_by_code(
    code: str = Path(..., min_length=1, description="바우처 코드"),
    voucher_service: VoucherService = Depends(get_voucher_service),
) -> VoucherResponse:
    return voucher_service.get_by_code(code)
