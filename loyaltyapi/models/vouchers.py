import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Enum, Index, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

from loyaltyapi.models.base import BaseModel, BigIntPK


class VoucherStatusEnum(str, enum.Enum):
    ACTIVE = "active"  # 사용 가능
    USED = "used"  # 사용 완료 (종료 상태)
    EXPIRED = "expired"  # 유효기간 만료 (종료 상태)
    CANCELLED = "cancelled"  # 관리자 취소 (종료 상태)


TERMINAL_VOUCHER_STATUSES = (
    VoucherStatusEnum.USED,
    VoucherStatusEnum.EXPIRED,
    VoucherStatusEnum.CANCELLED,
)


class Voucher(BaseModel):
    __tablename__ = "vouchers"
    __table_args__ = (
        Index("ix_vouchers_user_id", "user_id"),
        Index("ix_vouchers_status_expires_at", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[VoucherStatusEnum] = mapped_column(
        Enum(
            VoucherStatusEnum,
            name="voucher_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=VoucherStatusEnum.ACTIVE,
        nullable=False,
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # 어떤 카탈로그 교환으로 발급되었는지, 그리고 그 차감 원장 항목
    redemption_reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ledger_entry_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # 사용 정보 (체크아웃에서 적용된 주문)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_order_reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
