"""
누락 포인트 신고 처리 서비스

신고는 reported → (investigating) → resolved | rejected 로 한 번만 종료된다.
승인 시 지급은 상태 compare-and-set 과 같은 트랜잭션 안에서 이루어지므로
재시도나 동시 승인에도 포인트가 두 번 지급되지 않는다.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from loyaltyapi.core.exceptions import (
    AlreadyResolvedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from loyaltyapi.database.session import transaction_scope
from loyaltyapi.models.points import TransactionType
from loyaltyapi.models.reports import (
    OPEN_REPORT_STATUSES,
    TERMINAL_REPORT_STATUSES,
    ReportStatusEnum,
)
from loyaltyapi.repositories.points_repository import PointsRepository
from loyaltyapi.repositories.report_repository import ReportRepository
from loyaltyapi.schemas.points import AdjustmentMetadata
from loyaltyapi.schemas.reports import MissingPointsReportResponse
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.services.point_service import PointService
from loyaltyapi.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


def report_credit_key(report_id: int) -> str:
    """신고 지급 원장 항목의 멱등성 키 (reference 는 신고 ID 그대로)"""
    return f"report:{report_id}"


class ReconciliationService:
    def __init__(self, db: Session, notifier: Optional[NotificationService] = None):
        self.db = db
        self.report_repo = ReportRepository(db)
        self.points_repo = PointsRepository(db)
        self.point_service = PointService(db, notifier)
        self.notifier = notifier

    def get(self, report_id: int) -> MissingPointsReportResponse:
        report = self.report_repo.get_by_id(report_id)
        if report is None:
            raise NotFoundError(f"Report not found: {report_id}")
        return report

    def _already_resolved(self, report: MissingPointsReportResponse) -> AlreadyResolvedError:
        return AlreadyResolvedError(
            f"Report {report.id} is already {report.status.value}",
            details={"report_id": report.id, "status": report.status.value},
        )

    def file(
        self,
        user_id: str,
        order_reference: str,
        expected_points: int,
        reason: str = "",
        order_date: Optional[date] = None,
    ) -> MissingPointsReportResponse:
        """누락 포인트 신고 접수 - 포인트는 움직이지 않음

        Raises:
            ValidationError: expected_points <= 0
            ConflictError: 같은 주문에 대해 반려되지 않은 신고가 이미 있음
        """
        if expected_points <= 0:
            raise ValidationError(
                "expected_points must be positive",
                details={"expected_points": expected_points},
            )

        with transaction_scope(self.db):
            existing = self.report_repo.find_active_for_order(user_id, order_reference)
            if existing is not None:
                raise ConflictError(
                    f"A report for order {order_reference} already exists",
                    details={"report_id": existing.id, "status": existing.status.value},
                )

            report = self.report_repo.create(
                user_id=user_id,
                order_reference=order_reference,
                order_date=order_date,
                expected_points=expected_points,
                reason=reason or "",
                status=ReportStatusEnum.REPORTED,
                created_at=utc_now(),
            )

        logger.info(
            f"Filed missing points report {report.id} for user {user_id}: order {order_reference}, {expected_points} points"
        )
        return report

    def begin_investigation(self, report_id: int) -> MissingPointsReportResponse:
        """조사 시작 (reported → investigating)"""
        with transaction_scope(self.db):
            self.get(report_id)
            moved = self.report_repo.transition(
                report_id,
                [ReportStatusEnum.REPORTED],
                ReportStatusEnum.INVESTIGATING,
                investigating_at=utc_now(),
            )
            report = self.get(report_id)

        if not moved:
            if report.status in TERMINAL_REPORT_STATUSES:
                raise self._already_resolved(report)
            raise InvalidStateError(
                f"Report {report_id} is already under investigation",
                details={"report_id": report_id, "status": report.status.value},
            )

        logger.info(f"Report {report_id} moved to investigating")
        return report

    def resolve(
        self,
        report_id: int,
        approved: bool,
        operator_id: Optional[str] = None,
        note: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> MissingPointsReportResponse:
        """
        신고 승인/반려

        처리 순서 (하나의 트랜잭션):
        1. status IN (reported, investigating) 조건의 UPDATE 로 종료 상태 선점
        2. 승인이면 expected_points 만큼 adjustment 지급 (멱등성 키 report:<id>)
        3. 지급 원장 항목 ID 를 신고에 기록
        4. 커밋 - 중간에 실패하면 전부 롤백되어 신고는 이전 상태로 남는다

        Args:
            report_id: 신고 ID
            approved: 승인 여부
            operator_id: 처리 운영자
            note: 처리 메모
            timeout_ms: 이 호출에만 적용할 스토리지 타임아웃

        Raises:
            NotFoundError: 없는 신고
            AlreadyResolvedError: 이미 종료되었거나 다른 호출자가 먼저 종료함
        """
        target = ReportStatusEnum.RESOLVED if approved else ReportStatusEnum.REJECTED
        now = utc_now()
        credit = None

        with transaction_scope(self.db, timeout_ms=timeout_ms):
            report = self.get(report_id)
            if report.status in TERMINAL_REPORT_STATUSES:
                raise self._already_resolved(report)

            won = self.report_repo.transition(
                report_id,
                OPEN_REPORT_STATUSES,
                target,
                resolved_at=now,
                resolved_by=operator_id,
                resolution_note=note,
            )
            if not won:
                logger.warning(f"Report {report_id} was resolved by a concurrent caller")
                raise self._already_resolved(self.get(report_id))

            if approved:
                credit = self.point_service.apply_delta(
                    user_id=report.user_id,
                    delta=report.expected_points,
                    transaction_type=TransactionType.ADJUSTMENT,
                    reference=str(report_id),
                    description=f"Missing points approved: {report.order_reference}",
                    metadata=AdjustmentMetadata(
                        report_id=report_id, operator_id=operator_id, note=note
                    ),
                    idempotency_key=report_credit_key(report_id),
                    commit=False,
                    allow_reserved_key=True,
                )
                self.report_repo.set_resolution_entry(report_id, credit.entry_id)

            resolved = self.get(report_id)

        logger.info(
            f"Report {report_id} {target.value} by {operator_id or 'system'}"
            + (f", credited {report.expected_points} points (entry {credit.entry_id})" if credit else "")
        )
        if credit is not None:
            self.point_service.notify_appended(credit.entry)
        if self.notifier is not None:
            self.notifier.report_resolved(resolved)

        return resolved

    def recover_half_applied(self, limit: int = 500) -> List[MissingPointsReportResponse]:
        """
        지급은 되었지만 종료되지 않은 신고 복구

        report:<id> 원장 항목이 있거나 resolution_ledger_entry_id 가 설정된
        열린 신고를 resolved 로 마무리한다. 다시 지급하지 않는다.
        """
        recovered: List[MissingPointsReportResponse] = []
        now = utc_now()

        with transaction_scope(self.db):
            for report in self.report_repo.list_open(limit=limit):
                entry_id = report.resolution_ledger_entry_id
                if entry_id is None:
                    credit = self.points_repo.find_by_idempotency_key(
                        report_credit_key(report.id)
                    )
                    entry_id = credit.id if credit else None
                if entry_id is None:
                    continue

                if self.report_repo.transition(
                    report.id,
                    OPEN_REPORT_STATUSES,
                    ReportStatusEnum.RESOLVED,
                    resolved_at=now,
                    resolution_note=report.resolution_note
                    or "Recovered: credit already applied",
                ):
                    self.report_repo.set_resolution_entry(report.id, entry_id)
                    recovered.append(self.get(report.id))

        for report in recovered:
            logger.warning(
                f"Recovered half-applied report {report.id} (entry {report.resolution_ledger_entry_id})"
            )
            if self.notifier is not None:
                self.notifier.report_resolved(report)

        return recovered

    def list_by_status(
        self,
        status: Optional[ReportStatusEnum] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[MissingPointsReportResponse]:
        """상태별 신고 목록 (최신 접수순)"""
        reports, _ = self.report_repo.list_by_status(status, limit=limit, offset=offset)
        return reports
