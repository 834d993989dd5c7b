from typing import Optional, Union
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from loyaltyapi.core.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    InvalidDeltaError,
    InvalidStateError,
    ValidationError,
)
from loyaltyapi.database.session import transaction_scope
from loyaltyapi.models.points import TransactionType
from loyaltyapi.repositories.balance_repository import UserBalanceRepository
from loyaltyapi.repositories.points_repository import PointsRepository
from loyaltyapi.schemas.points import (
    LedgerMetadata,
    PointsIntegrityCheckResponse,
    PointsLedgerEntry,
    PointsTransactionResult,
    ReversalMetadata,
    is_reserved_idempotency_key,
    ledger_metadata_adapter,
)
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class PointService:
    """포인트 잔액/원장 관련 비즈니스 로직을 담당하는 서비스

    잔액을 바꾸는 유일한 경로는 apply_delta 이다. 잔액 읽기, 원장 추가,
    잔액 캐시 갱신이 하나의 트랜잭션으로 처리된다.
    """

    def __init__(self, db: Session, notifier: Optional[NotificationService] = None):
        self.db = db
        self.points_repo = PointsRepository(db)
        self.balance_repo = UserBalanceRepository(db)
        self.notifier = notifier

    def get_balance(self, user_id: str) -> int:
        """사용자 포인트 잔액 조회 - 마지막으로 커밋된 apply_delta 반영"""
        return self.balance_repo.get_balance(user_id)

    def _validate_metadata(
        self,
        transaction_type: TransactionType,
        metadata: Union[LedgerMetadata, dict, None],
    ) -> Optional[dict]:
        if metadata is None:
            return None

        if isinstance(metadata, dict):
            try:
                metadata = ledger_metadata_adapter.validate_python(metadata)
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid ledger metadata", details={"errors": e.errors()}
                )

        if metadata.kind != transaction_type.value:
            raise ValidationError(
                f"Metadata kind '{metadata.kind}' does not match transaction type '{transaction_type.value}'"
            )
        return metadata.model_dump(mode="json")

    def apply_delta(
        self,
        user_id: str,
        delta: int,
        transaction_type: Union[TransactionType, str],
        reference: Optional[str] = None,
        description: str = "",
        metadata: Union[LedgerMetadata, dict, None] = None,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
        timeout_ms: Optional[int] = None,
        allow_reserved_key: bool = False,
    ) -> PointsTransactionResult:
        """포인트 변동 적용

        Args:
            user_id: 사용자 ID
            delta: 포인트 변동량 (양수=증가, 음수=감소, 0 불가)
            transaction_type: earn / redeem / adjustment / expiry / reversal
            reference: 이 변동을 유발한 주문/카탈로그/리포트 참조
            description: 감사 화면 표시용 설명
            metadata: 거래 유형별 메타데이터 (kind == transaction_type)
            idempotency_key: 같은 키로 이미 처리된 거래가 있으면 그 결과를 반환
            commit: False 이면 호출자의 트랜잭션에 참여 (커밋하지 않음)
            timeout_ms: 이 호출에만 적용할 스토리지 타임아웃
            allow_reserved_key: report: / reversal: 접두사 키 사용 허용 (내부 호출 전용)

        Returns:
            PointsTransactionResult: 원장 항목 ID 와 새 잔액

        Raises:
            InvalidDeltaError: delta == 0
            InsufficientBalanceError: 결과 잔액이 음수
            ValidationError: 예약된 멱등성 키 접두사
            ConflictError: 잔액 스냅샷/버전 충돌, 다른 사용자의 멱등성 키, 요청과 다른 기존 거래
            TransientError: 스토리지 타임아웃 (결과 불명, 상태 재조회 필요)
        """
        if delta == 0:
            raise InvalidDeltaError(details={"user_id": user_id})
        if is_reserved_idempotency_key(idempotency_key) and not allow_reserved_key:
            raise ValidationError(
                "Idempotency key prefix is reserved for internal operations",
                details={"idempotency_key": idempotency_key},
            )

        transaction_type = TransactionType(transaction_type)
        metadata_payload = self._validate_metadata(transaction_type, metadata)

        appended: Optional[PointsLedgerEntry] = None
        with transaction_scope(self.db, commit=commit, timeout_ms=timeout_ms):
            # 같은 사용자의 호출은 이 행 잠금에서 직렬화됨
            snapshot = self.balance_repo.lock_for_update(user_id)

            if idempotency_key:
                existing = self.points_repo.find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    if existing.user_id != user_id:
                        raise ConflictError(
                            "Idempotency key already used by another user",
                            details={"idempotency_key": idempotency_key},
                        )
                    if (
                        existing.points_change != delta
                        or existing.transaction_type != transaction_type
                        or existing.reference != reference
                    ):
                        raise ConflictError(
                            "Idempotency key already used for a different transaction",
                            details={
                                "idempotency_key": idempotency_key,
                                "entry_id": existing.id,
                                "points_change": existing.points_change,
                                "transaction_type": existing.transaction_type.value,
                                "reference": existing.reference,
                            },
                        )
                    logger.info(
                        f"Replayed transaction {existing.id} for user {user_id} (key={idempotency_key})"
                    )
                    return PointsTransactionResult(
                        entry_id=existing.id,
                        user_id=user_id,
                        transaction_type=existing.transaction_type,
                        delta=existing.points_change,
                        new_balance=snapshot.balance,
                        replayed=True,
                        entry=existing,
                    )

            new_balance = snapshot.balance + delta
            if new_balance < 0:
                logger.warning(
                    f"Rejected {transaction_type.value} of {delta} for user {user_id}: balance {snapshot.balance}"
                )
                raise InsufficientBalanceError(
                    f"Insufficient balance. Required: {-delta}, Available: {snapshot.balance}",
                    details={"user_id": user_id, "balance": snapshot.balance, "delta": delta},
                )

            appended = self.points_repo.append(
                user_id=user_id,
                transaction_type=transaction_type,
                points_change=delta,
                points_before=snapshot.balance,
                points_after=new_balance,
                description=description,
                reference=reference,
                idempotency_key=idempotency_key,
                metadata=metadata_payload,
            )

            if not self.balance_repo.compare_and_set(user_id, snapshot.version, new_balance):
                raise ConflictError(
                    "Balance changed concurrently",
                    details={"user_id": user_id, "expected_version": snapshot.version},
                )

        logger.info(
            f"Applied {transaction_type.value} {delta:+d} for user {user_id}: entry {appended.id}, balance {new_balance}"
        )
        if commit:
            self.notify_appended(appended)

        return PointsTransactionResult(
            entry_id=appended.id,
            user_id=user_id,
            transaction_type=transaction_type,
            delta=delta,
            new_balance=new_balance,
            entry=appended,
        )

    def notify_appended(self, entry: PointsLedgerEntry) -> None:
        """커밋 이후에만 호출 - 알림 실패는 원장에 영향 없음"""
        if self.notifier is not None:
            self.notifier.ledger_entry_appended(entry)

    def reverse_entry(
        self,
        entry_id: int,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> PointsTransactionResult:
        """원장 항목 취소 - 반대 부호의 reversal 항목을 한 번만 추가

        원본 항목은 수정하지 않는다. 같은 항목을 다시 취소하면 기존 reversal 결과가 반환된다.
        """
        original = self.points_repo.get(entry_id)
        if original.transaction_type == TransactionType.REVERSAL:
            raise InvalidStateError(
                "A reversal entry cannot be reversed",
                details={"entry_id": entry_id},
            )

        note = description or f"Reversal of ledger entry {entry_id}"
        return self.apply_delta(
            user_id=original.user_id,
            delta=-original.points_change,
            transaction_type=TransactionType.REVERSAL,
            reference=f"ledger:{entry_id}",
            description=note,
            metadata=ReversalMetadata(reversed_entry_id=entry_id, note=description),
            idempotency_key=f"reversal:{entry_id}",
            commit=commit,
            allow_reserved_key=True,
        )

    def get_entry(self, entry_id: int) -> PointsLedgerEntry:
        return self.points_repo.get(entry_id)

    def verify_integrity_for_user(self, user_id: str) -> PointsIntegrityCheckResponse:
        """
        특정 사용자의 포인트 정합성 검증

        검증 방식:
        1. 모든 거래의 points_change 합계 계산
        2. 잔액 캐시 및 최신 거래의 points_after 와 비교
        3. 하나라도 다르면 MISMATCH (캐시를 고치지 않고 보고만 함)
        """
        calculated_balance = self.points_repo.sum_changes(user_id)
        cached_balance = self.balance_repo.get_balance(user_id)
        last_entry = self.points_repo.last_entry(user_id)
        last_points_after = last_entry.points_after if last_entry else 0

        status = (
            "OK"
            if calculated_balance == cached_balance == last_points_after
            else "MISMATCH"
        )
        if status != "OK":
            logger.error(
                f"Balance drift for user {user_id}: ledger={calculated_balance}, cache={cached_balance}, last={last_points_after}"
            )

        return PointsIntegrityCheckResponse(
            status=status,
            user_id=user_id,
            calculated_balance=calculated_balance,
            cached_balance=cached_balance,
            last_points_after=last_points_after,
            entry_count=self.points_repo.count_for(user_id),
            mismatched_users=[user_id] if status != "OK" else [],
            verified_at=utc_now(),
        )

    def verify_global_integrity(self) -> PointsIntegrityCheckResponse:
        """
        전체 시스템의 포인트 정합성 검증

        사용자별 원장 합계와 잔액 캐시를 비교한다. 원장이 없는 캐시 행은
        0 과 비교된다. 대량 데이터에서는 배치 작업으로 실행한다.
        """
        ledger_sums = self.points_repo.sum_changes_by_user()
        cached = self.balance_repo.all_balances()

        mismatched = sorted(
            user_id
            for user_id in set(ledger_sums) | set(cached)
            if ledger_sums.get(user_id, 0) != cached.get(user_id, 0)
        )
        if mismatched:
            logger.error(f"Global integrity check found {len(mismatched)} drifted balances")

        return PointsIntegrityCheckResponse(
            status="OK" if not mismatched else "MISMATCH",
            total_cached_balance=sum(cached.values()),
            total_deltas=sum(ledger_sums.values()),
            user_count=len(set(ledger_sums) | set(cached)),
            mismatched_users=mismatched,
            verified_at=utc_now(),
        )
