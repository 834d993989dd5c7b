from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from loyaltyapi.schemas.vouchers import VoucherResponse


class RewardExchangeRequest(BaseModel):
    """포인트 → 바우처 교환 요청"""

    user_id: str = Field(..., min_length=1, description="사용자 ID")
    catalog_item_reference: str = Field(..., min_length=1, max_length=200, description="카탈로그 항목 ID")
    cost_points: int = Field(..., gt=0, description="차감할 포인트")
    voucher_value: Decimal = Field(..., gt=0, description="발급할 바우처 금액")
    validity_days: Optional[int] = Field(None, ge=1, description="유효 기간(일)")
    title: Optional[str] = Field(None, max_length=200, description="리워드 제목")


class RewardExchangeResponse(BaseModel):
    """교환 결과 - 차감 원장 항목과 발급된 바우처"""

    success: bool = True
    ledger_entry_id: int
    balance_after: int
    voucher: VoucherResponse
