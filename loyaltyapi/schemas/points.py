from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from loyaltyapi.models.points import TransactionType

# 내부 전용 멱등성 키 접두사 (신고 지급, 원장 취소)
RESERVED_IDEMPOTENCY_PREFIXES = ("report:", "reversal:")


def is_reserved_idempotency_key(key: Optional[str]) -> bool:
    return bool(key) and key.startswith(RESERVED_IDEMPOTENCY_PREFIXES)


# ---------------------------------------------------------------------------
# 거래 유형별 메타데이터 - kind 는 반드시 transaction_type 과 같아야 한다
# ---------------------------------------------------------------------------


class EarnMetadata(BaseModel):
    kind: Literal["earn"] = "earn"
    order_reference: str = Field(..., min_length=1, description="적립 근거 주문 ID")
    order_total: Optional[Decimal] = Field(None, ge=0, description="주문 금액")


class RedeemMetadata(BaseModel):
    kind: Literal["redeem"] = "redeem"
    catalog_item_reference: str = Field(..., min_length=1, description="교환한 카탈로그 항목")
    voucher_value: Optional[Decimal] = Field(None, gt=0, description="발급될 바우처 금액")


class AdjustmentMetadata(BaseModel):
    kind: Literal["adjustment"] = "adjustment"
    report_id: Optional[int] = Field(None, description="누락 포인트 신고 ID")
    operator_id: Optional[str] = Field(None, description="처리한 운영자")
    note: Optional[str] = Field(None, max_length=500)


class ExpiryMetadata(BaseModel):
    kind: Literal["expiry"] = "expiry"
    expired_points_batch: Optional[str] = Field(None, description="소멸 배치 식별자")


class ReversalMetadata(BaseModel):
    kind: Literal["reversal"] = "reversal"
    reversed_entry_id: int = Field(..., description="취소 대상 원장 항목 ID")
    note: Optional[str] = Field(None, max_length=500)


LedgerMetadata = Annotated[
    Union[EarnMetadata, RedeemMetadata, AdjustmentMetadata, ExpiryMetadata, ReversalMetadata],
    Field(discriminator="kind"),
]

ledger_metadata_adapter = TypeAdapter(LedgerMetadata)


# ---------------------------------------------------------------------------
# 원장 / 잔액
# ---------------------------------------------------------------------------


class PointsBalanceResponse(BaseModel):
    """포인트 잔액 응답"""

    user_id: str = Field(..., description="사용자 ID")
    balance: int = Field(..., description="현재 포인트 잔액")

    class Config:
        from_attributes = True


class PointsLedgerEntry(BaseModel):
    """포인트 원장 항목"""

    id: int = Field(..., description="원장 항목 ID")
    user_id: str = Field(..., description="사용자 ID")
    transaction_type: TransactionType = Field(..., description="트랜잭션 타입")
    points_change: int = Field(..., description="포인트 변화량")
    points_before: int = Field(..., description="트랜잭션 전 잔액")
    points_after: int = Field(..., description="트랜잭션 후 잔액")
    description: str = Field("", description="트랜잭션 설명")
    reference: Optional[str] = Field(None, description="참조 ID")
    idempotency_key: Optional[str] = Field(None, description="멱등성 키")
    metadata: Optional[LedgerMetadata] = Field(None, description="유형별 메타데이터")
    created_at: datetime = Field(..., description="생성 시간")

    class Config:
        from_attributes = True


class PointsLedgerResponse(BaseModel):
    """포인트 원장 조회 응답 (최신순, 커서 페이징)"""

    user_id: str = Field(..., description="사용자 ID")
    balance: int = Field(..., description="현재 잔액")
    entries: List[PointsLedgerEntry] = Field(..., description="원장 항목 목록")
    next_cursor: Optional[int] = Field(None, description="다음 페이지 커서 (마지막 항목 ID)")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class PointsTransactionRequest(BaseModel):
    """포인트 트랜잭션 요청 (주문/카탈로그 등 외부 협력 시스템용)"""

    delta: int = Field(..., description="포인트 변동량 (양수: 적립, 음수: 차감, 0 불가)")
    transaction_type: TransactionType = Field(..., description="트랜잭션 타입")
    reference: Optional[str] = Field(None, max_length=200, description="참조 ID")
    description: str = Field("", max_length=255, description="트랜잭션 설명")
    idempotency_key: Optional[str] = Field(None, max_length=200, description="멱등성 키")
    metadata: Optional[LedgerMetadata] = Field(None, description="유형별 메타데이터")

    @field_validator("idempotency_key")
    @classmethod
    def validate_idempotency_key(cls, v: Optional[str]) -> Optional[str]:
        if is_reserved_idempotency_key(v):
            raise ValueError(
                f"Idempotency keys starting with {RESERVED_IDEMPOTENCY_PREFIXES} are reserved"
            )
        return v


class PointsTransactionResult(BaseModel):
    """포인트 트랜잭션 결과"""

    entry_id: int = Field(..., description="생성된(또는 재생된) 원장 항목 ID")
    user_id: str = Field(..., description="사용자 ID")
    transaction_type: TransactionType = Field(..., description="트랜잭션 타입")
    delta: int = Field(..., description="포인트 변화량")
    new_balance: int = Field(..., description="트랜잭션 후 잔액")
    replayed: bool = Field(False, description="같은 멱등성 키로 이미 처리된 거래 여부")
    # 커밋 후 알림용, 응답에는 포함하지 않음
    entry: Optional[PointsLedgerEntry] = Field(None, exclude=True)


class ReversalRequest(BaseModel):
    description: Optional[str] = Field(None, max_length=255, description="취소 사유")


class PointsIntegrityCheckResponse(BaseModel):
    """포인트 정합성 검증 응답"""

    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    user_id: Optional[str] = Field(None, description="사용자 ID (단일 사용자 검증 시)")
    calculated_balance: Optional[int] = Field(None, description="원장 합계로 계산된 잔액")
    cached_balance: Optional[int] = Field(None, description="잔액 캐시 값")
    last_points_after: Optional[int] = Field(None, description="마지막 원장 항목의 points_after")
    entry_count: Optional[int] = Field(None, description="항목 수")
    total_cached_balance: Optional[int] = Field(None, description="전체 잔액 캐시 합계")
    total_deltas: Optional[int] = Field(None, description="전체 델타 합계")
    user_count: Optional[int] = Field(None, description="사용자 수")
    mismatched_users: List[str] = Field(default_factory=list, description="불일치 사용자 목록")
    verified_at: datetime = Field(..., description="검증 시간")


class BalanceSnapshot(BaseModel):
    """잠금 구간 안에서 읽은 잔액 캐시 행"""

    user_id: str
    balance: int
    version: int

    class Config:
        from_attributes = True
