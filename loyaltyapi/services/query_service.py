from typing import Optional

from sqlalchemy.orm import Session

from loyaltyapi.core.exceptions import NotFoundError
from loyaltyapi.models.reports import ReportStatusEnum
from loyaltyapi.models.vouchers import VoucherStatusEnum
from loyaltyapi.repositories.balance_repository import UserBalanceRepository
from loyaltyapi.repositories.points_repository import PointsRepository
from loyaltyapi.repositories.report_repository import ReportRepository
from loyaltyapi.repositories.voucher_repository import VoucherRepository
from loyaltyapi.schemas.pagination import PaginationLimits
from loyaltyapi.schemas.points import (
    PointsBalanceResponse,
    PointsIntegrityCheckResponse,
    PointsLedgerResponse,
)
from loyaltyapi.schemas.reports import MissingPointsReportResponse, ReportListResponse
from loyaltyapi.schemas.vouchers import VoucherListResponse
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.voucher_service import present_voucher
from loyaltyapi.utils.timezone_utils import utc_now


class LoyaltyQueryService:
    """조회 전용 파사드 - 잔액, 원장, 바우처, 신고 상태를 바꾸는 메서드가 없다"""

    def __init__(self, db: Session):
        self.db = db
        self.points_repo = PointsRepository(db)
        self.balance_repo = UserBalanceRepository(db)
        self.voucher_repo = VoucherRepository(db)
        self.report_repo = ReportRepository(db)

    def get_balance(self, user_id: str) -> PointsBalanceResponse:
        return PointsBalanceResponse(
            user_id=user_id, balance=self.balance_repo.get_balance(user_id)
        )

    def get_ledger_history(
        self,
        user_id: str,
        limit: int = PaginationLimits.POINTS_LEDGER["default"],
        cursor: Optional[int] = None,
    ) -> PointsLedgerResponse:
        """원장 이력 (최신순)

        cursor 는 이전 페이지의 next_cursor (마지막 항목 ID) 이다.
        한 건을 더 읽어 다음 페이지 존재 여부를 판단한다.
        """
        limit = max(
            PaginationLimits.POINTS_LEDGER["min"],
            min(limit, PaginationLimits.POINTS_LEDGER["max"]),
        )
        entries = self.points_repo.list_recent(user_id, before_id=cursor, limit=limit + 1)
        has_next = len(entries) > limit
        entries = entries[:limit]

        return PointsLedgerResponse(
            user_id=user_id,
            balance=self.balance_repo.get_balance(user_id),
            entries=entries,
            next_cursor=entries[-1].id if has_next and entries else None,
            has_next=has_next,
        )

    def get_user_vouchers(
        self, user_id: str, status: Optional[VoucherStatusEnum] = None
    ) -> VoucherListResponse:
        """사용자 바우처 (사용 가능 + 이력)

        유효기간이 지난 active 바우처는 저장 상태와 무관하게 expired 로 보여준다.
        """
        now = utc_now()
        vouchers = [
            present_voucher(voucher, now)
            for voucher in self.voucher_repo.list_for_user(user_id)
        ]
        if status is not None:
            vouchers = [voucher for voucher in vouchers if voucher.status == status]

        return VoucherListResponse(
            user_id=user_id,
            vouchers=vouchers,
            total_count=len(vouchers),
            active_count=sum(
                1 for voucher in vouchers if voucher.status == VoucherStatusEnum.ACTIVE
            ),
        )

    def list_reports(
        self,
        status: Optional[ReportStatusEnum] = None,
        limit: int = PaginationLimits.REPORTS["default"],
        offset: int = 0,
    ) -> ReportListResponse:
        reports, total_count = self.report_repo.list_by_status(
            status, limit=limit, offset=offset
        )
        return ReportListResponse(
            status=status,
            reports=reports,
            total_count=total_count,
            has_next=offset + len(reports) < total_count,
        )

    def get_report(self, report_id: int) -> MissingPointsReportResponse:
        report = self.report_repo.get_by_id(report_id)
        if report is None:
            raise NotFoundError(f"Report not found: {report_id}")
        return report

    def get_integrity(self, user_id: str) -> PointsIntegrityCheckResponse:
        return PointService(self.db).verify_integrity_for_user(user_id)
