"""
포인트 API 라우터

조회 엔드포인트:
- GET /points/{user_id}/balance: 포인트 잔액
- GET /points/{user_id}/ledger: 원장 이력 (최신순, 커서 페이징)
- GET /points/{user_id}/integrity: 원장/잔액 캐시 정합성
- GET /points/entries/{entry_id}: 원장 항목 단건

변경 엔드포인트 (주문/체크아웃, 카탈로그 등 협력 시스템용):
- POST /points/{user_id}/transactions: 포인트 변동 적용
- POST /points/entries/{entry_id}/reversal: 원장 항목 취소

인증은 앞단 게이트웨이가 담당하며 사용자 ID 는 경로로 전달된다.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from loyaltyapi.deps import get_point_service, get_query_service
from loyaltyapi.schemas.pagination import PaginationLimits
from loyaltyapi.schemas.points import (
    PointsBalanceResponse,
    PointsIntegrityCheckResponse,
    PointsLedgerEntry,
    PointsLedgerResponse,
    PointsTransactionRequest,
    PointsTransactionResult,
    ReversalRequest,
)
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.query_service import LoyaltyQueryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/entries/{entry_id}", response_model=PointsLedgerEntry)
def get_ledger_entry(
    entry_id: int = Path(..., ge=1, description="원장 항목 ID"),
    point_service: PointService = Depends(get_point_service),
) -> PointsLedgerEntry:
    """원장 항목 단건 조회 (404: 없는 항목)"""
    return point_service.get_entry(entry_id)


@router.post("/entries/{entry_id}/reversal", response_model=PointsTransactionResult)
def reverse_ledger_entry(
    entry_id: int = Path(..., ge=1, description="취소할 원장 항목 ID"),
    request: Optional[ReversalRequest] = None,
    point_service: PointService = Depends(get_point_service),
) -> PointsTransactionResult:
    """
    원장 항목 취소 - 반대 부호의 reversal 항목 추가

    같은 항목을 다시 취소하면 기존 reversal 결과가 replayed=true 로 반환된다.

    HTTP Status:
        200: 취소 완료 (또는 재생)
        400: 잔액 부족 (적립 취소 시 이미 사용한 경우)
        404: 없는 항목
        409: reversal 항목은 취소할 수 없음
    """
    description = request.description if request else None
    return point_service.reverse_entry(entry_id, description=description)


@router.get("/{user_id}/balance", response_model=PointsBalanceResponse)
def get_balance(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    query_service: LoyaltyQueryService = Depends(get_query_service),
) -> PointsBalanceResponse:
    """포인트 잔액 조회 - 원장이 없는 사용자는 0"""
    return query_service.get_balance(user_id)


@router.get("/{user_id}/ledger", response_model=PointsLedgerResponse)
def get_ledger(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    limit: int = Query(
        PaginationLimits.POINTS_LEDGER["default"],
        ge=PaginationLimits.POINTS_LEDGER["min"],
        le=PaginationLimits.POINTS_LEDGER["max"],
        description="페이지 크기",
    ),
    cursor: Optional[int] = Query(None, ge=1, description="이전 페이지의 next_cursor"),
    query_service: LoyaltyQueryService = Depends(get_query_service),
) -> PointsLedgerResponse:
    """
    포인트 원장 이력 조회 (최신순)

    사용 예시:
        GET /points/u-1/ledger?limit=20           # 최근 20건
        GET /points/u-1/ledger?limit=20&cursor=81 # 항목 81 이전 20건
    """
    return query_service.get_ledger_history(user_id, limit=limit, cursor=cursor)


@router.get("/{user_id}/integrity", response_model=PointsIntegrityCheckResponse)
def verify_integrity(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    query_service: LoyaltyQueryService = Depends(get_query_service),
) -> PointsIntegrityCheckResponse:
    """원장 합계, 잔액 캐시, 마지막 points_after 비교 (보고만 하고 고치지 않음)"""
    return query_service.get_integrity(user_id)


@router.post("/{user_id}/transactions", response_model=PointsTransactionResult)
def apply_transaction(
    request: PointsTransactionRequest,
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    point_service: PointService = Depends(get_point_service),
) -> PointsTransactionResult:
    """
    포인트 변동 적용 - 주문 적립, 카탈로그 차감 등

    idempotency_key 를 보내면 재시도해도 한 번만 반영된다.

    HTTP Status:
        200: 적용 완료 (replayed=true 이면 기존 결과)
        400: 잔액 부족
        409: 동시성 충돌 / 다른 사용자의 멱등성 키
        422: delta == 0, 메타데이터 유형 불일치
        503: 스토리지 장애 (결과 불명, 재조회 후 재시도)
    """
    return point_service.apply_delta(
        user_id=user_id,
        delta=request.delta,
        transaction_type=request.transaction_type,
        reference=request.reference,
        description=request.description,
        metadata=request.metadata,
        idempotency_key=request.idempotency_key,
    )
