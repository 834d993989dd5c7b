import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, Date, DateTime, Enum, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from loyaltyapi.models.base import BaseModel, BigIntPK


class ReportStatusEnum(str, enum.Enum):
    REPORTED = "reported"  # 사용자 접수
    INVESTIGATING = "investigating"  # 운영자 조사 중 (선택 단계)
    RESOLVED = "resolved"  # 승인 후 포인트 지급 완료 (종료 상태)
    REJECTED = "rejected"  # 반려 (종료 상태)


OPEN_REPORT_STATUSES = (ReportStatusEnum.REPORTED, ReportStatusEnum.INVESTIGATING)
TERMINAL_REPORT_STATUSES = (ReportStatusEnum.RESOLVED, ReportStatusEnum.REJECTED)


class MissingPointsReport(BaseModel):
    """
    누락 포인트 신고

    resolution_ledger_entry_id 는 승인 시에만 설정되며, 한 번 지급된 신고를
    다시 지급하지 않기 위한 기준점이다.
    """

    __tablename__ = "missing_points_reports"
    __table_args__ = (
        CheckConstraint("expected_points > 0", name="ck_reports_expected_points_positive"),
        Index("ix_reports_status_created_at", "status", "created_at"),
        Index("ix_reports_user_order", "user_id", "order_reference"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    order_reference: Mapped[str] = mapped_column(Text, nullable=False)
    order_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expected_points: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[ReportStatusEnum] = mapped_column(
        Enum(
            ReportStatusEnum,
            name="report_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ReportStatusEnum.REPORTED,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    investigating_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolution_ledger_entry_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
