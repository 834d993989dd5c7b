from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from loyaltyapi.models.vouchers import VoucherStatusEnum


class VoucherResponse(BaseModel):
    """바우처 상세"""

    id: int
    user_id: str
    code: str
    value: Decimal
    title: Optional[str] = None
    status: VoucherStatusEnum
    issued_at: datetime
    expires_at: datetime
    redemption_reference: Optional[str] = None
    ledger_entry_id: Optional[int] = None
    used_at: Optional[datetime] = None
    used_order_reference: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    expired_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VoucherIssueRequest(BaseModel):
    """바우처 발급 요청 - 호출자는 이미 포인트를 차감했어야 한다"""

    user_id: str = Field(..., min_length=1, description="사용자 ID")
    value: Decimal = Field(..., gt=0, description="바우처 금액")
    validity_days: Optional[int] = Field(None, ge=1, description="유효 기간(일)")
    redemption_reference: Optional[str] = Field(None, max_length=200, description="카탈로그 교환 참조")
    title: Optional[str] = Field(None, max_length=200, description="표시용 제목")
    ledger_entry_id: Optional[int] = Field(None, description="포인트 차감 원장 항목 ID")


class VoucherRedeemRequest(BaseModel):
    """체크아웃에서 바우처 사용"""

    code: str = Field(..., min_length=1, max_length=64, description="바우처 코드")
    order_reference: Optional[str] = Field(None, max_length=200, description="적용된 주문 ID")


class VoucherCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255, description="취소 사유")


class VoucherListResponse(BaseModel):
    """사용자 바우처 목록 (사용 가능 + 이력)"""

    user_id: str
    vouchers: List[VoucherResponse]
    total_count: int
    active_count: int


class VoucherExpirySweepResponse(BaseModel):
    expired_count: int = Field(..., description="이번 실행에서 만료 처리된 바우처 수")
    swept_at: datetime
