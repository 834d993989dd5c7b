from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from loyaltyapi.models.reports import ReportStatusEnum


class MissingPointsReportResponse(BaseModel):
    """누락 포인트 신고"""

    id: int
    user_id: str
    order_reference: str
    order_date: Optional[date] = None
    expected_points: int
    reason: str
    status: ReportStatusEnum
    created_at: datetime
    investigating_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    resolution_ledger_entry_id: Optional[int] = None

    class Config:
        from_attributes = True


class ReportFileRequest(BaseModel):
    """누락 포인트 신고 접수"""

    user_id: str = Field(..., min_length=1, description="사용자 ID")
    order_reference: str = Field(..., min_length=1, max_length=200, description="주문 ID")
    expected_points: int = Field(..., gt=0, description="받았어야 할 포인트")
    reason: str = Field("", max_length=1000, description="신고 사유")
    order_date: Optional[date] = Field(None, description="주문일")


class ReportResolveRequest(BaseModel):
    """운영자 승인/반려"""

    approved: bool = Field(..., description="승인 여부")
    operator_id: Optional[str] = Field(None, max_length=100, description="처리 운영자 ID")
    note: Optional[str] = Field(None, max_length=500, description="처리 메모")


class ReportListResponse(BaseModel):
    status: Optional[ReportStatusEnum] = None
    reports: List[MissingPointsReportResponse]
    total_count: int
    has_next: bool


class ReportRecoveryResponse(BaseModel):
    recovered_count: int
    reports: List[MissingPointsReportResponse]
