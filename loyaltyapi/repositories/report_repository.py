from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from loyaltyapi.models.reports import (
    MissingPointsReport as ReportModel,
    OPEN_REPORT_STATUSES,
    ReportStatusEnum,
)
from loyaltyapi.repositories.base import BaseRepository
from loyaltyapi.schemas.reports import MissingPointsReportResponse


class ReportRepository(BaseRepository[ReportModel, MissingPointsReportResponse]):
    """누락 포인트 신고 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(ReportModel, MissingPointsReportResponse, db)

    def create(self, **kwargs) -> MissingPointsReportResponse:
        return self._to_schema(self._add(**kwargs))

    def transition(
        self,
        report_id: int,
        from_statuses: Iterable[ReportStatusEnum],
        to_status: ReportStatusEnum,
        **fields: Any,
    ) -> bool:
        """
        상태 compare-and-set

        WHERE id = ? AND status IN (from_statuses) 조건의 UPDATE 한 번으로 전이한다.
        영향받은 행이 0 이면 다른 호출자가 먼저 전이시킨 것이다.
        """
        values: Dict[Any, Any] = {ReportModel.status: to_status}
        for key, value in fields.items():
            values[getattr(ReportModel, key)] = value

        return self._compare_and_set(
            [ReportModel.id == report_id, ReportModel.status.in_(list(from_statuses))],
            values,
        )

    def set_resolution_entry(self, report_id: int, entry_id: int) -> bool:
        """승인된 신고에 지급 원장 항목 ID 기록 (한 번만)"""
        return self._compare_and_set(
            [
                ReportModel.id == report_id,
                ReportModel.resolution_ledger_entry_id.is_(None),
            ],
            {ReportModel.resolution_ledger_entry_id: entry_id},
        )

    def find_active_for_order(
        self, user_id: str, order_reference: str
    ) -> Optional[MissingPointsReportResponse]:
        """같은 주문에 대해 반려되지 않은 신고 조회"""
        model_instance = (
            self.db.query(ReportModel)
            .filter(
                ReportModel.user_id == user_id,
                ReportModel.order_reference == order_reference,
                ReportModel.status != ReportStatusEnum.REJECTED,
            )
            .first()
        )
        return self._to_schema(model_instance)

    def list_by_status(
        self,
        status: Optional[ReportStatusEnum] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[MissingPointsReportResponse], int]:
        """상태별 신고 목록 (최신 접수순) 과 전체 건수"""
        query = self.db.query(ReportModel)
        if status is not None:
            query = query.filter(ReportModel.status == status)

        total_count = query.count()
        model_instances = (
            query.order_by(desc(ReportModel.created_at), desc(ReportModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [self._to_schema(instance) for instance in model_instances], total_count

    def list_open(self, limit: int = 500) -> List[MissingPointsReportResponse]:
        """아직 종료되지 않은 신고 (복구 작업용, 오래된 순)"""
        model_instances = (
            self.db.query(ReportModel)
            .filter(ReportModel.status.in_(list(OPEN_REPORT_STATUSES)))
            .order_by(ReportModel.id)
            .limit(limit)
            .all()
        )
        return [self._to_schema(instance) for instance in model_instances]
