"""
포인트 원장 리포지토리 (Ledger Store)

이 파일은 원장에 대한 모든 데이터베이스 접근을 담당합니다:
1. 원장 항목 추가 (append-only, 수정/삭제 메서드 없음)
2. 생성 순서 조회 (재시작 가능한 커서 페이징)
3. 멱등성 키 / 참조 기반 조회
4. 정합성 검증용 집계

핵심 특징:
- append 는 같은 트랜잭션 안의 잔액 캐시 스냅샷과 points_before/points_after 가
  맞지 않으면 ConflictError 로 실패합니다 (PointService 밖에서의 lost update 방지)
- 사용자별 created_at 은 단조 증가합니다
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import asc, desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyaltyapi.core.exceptions import ConflictError, NotFoundError
from loyaltyapi.models.points import (
    PointsLedger as PointsLedgerModel,
    TransactionType,
    UserBalance,
)
from loyaltyapi.repositories.base import BaseRepository
from loyaltyapi.schemas.points import PointsLedgerEntry, ledger_metadata_adapter
from loyaltyapi.utils.timezone_utils import as_utc, utc_now


class PointsRepository(BaseRepository[PointsLedgerModel, PointsLedgerEntry]):
    """
    포인트 원장 리포지토리

    주요 기능:
    1. 불변성 - append 외의 쓰기 경로가 없음
    2. 잔액 체인 검증 - points_before == 캐시 스냅샷, points_after == before + change
    3. 완전한 감사 추적 - 모든 포인트 변동 기록
    """

    def __init__(self, db: Session):
        super().__init__(PointsLedgerModel, PointsLedgerEntry, db)

    def _to_ledger_entry(self, model_instance: PointsLedgerModel) -> Optional[PointsLedgerEntry]:
        """
        SQLAlchemy 모델을 Pydantic 스키마로 변환

        Note:
            - metadata 컬럼은 모델에서 entry_metadata 로 매핑되어 있어 수동 변환
            - 저장된 JSON 은 거래 유형별 메타데이터 모델로 다시 검증
        """
        if model_instance is None:
            return None

        raw_metadata = model_instance.entry_metadata
        data = {
            "id": model_instance.id,
            "user_id": model_instance.user_id,
            "transaction_type": model_instance.transaction_type,
            "points_change": model_instance.points_change,
            "points_before": model_instance.points_before,
            "points_after": model_instance.points_after,
            "description": model_instance.description or "",
            "reference": model_instance.reference,
            "idempotency_key": model_instance.idempotency_key,
            "metadata": (
                ledger_metadata_adapter.validate_python(raw_metadata)
                if raw_metadata
                else None
            ),
            "created_at": as_utc(model_instance.created_at),
        }
        return PointsLedgerEntry(**data)

    def _cached_balance(self, user_id: str) -> int:
        balance = (
            self.db.query(UserBalance.balance)
            .filter(UserBalance.user_id == user_id)
            .scalar()
        )
        return balance or 0

    def _last_created_at(self, user_id: str) -> Optional[datetime]:
        last = (
            self.db.query(func.max(self.model_class.created_at))
            .filter(self.model_class.user_id == user_id)
            .scalar()
        )
        return as_utc(last)

    def append(
        self,
        user_id: str,
        transaction_type: TransactionType,
        points_change: int,
        points_before: int,
        points_after: int,
        description: str = "",
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PointsLedgerEntry:
        """
        원장 항목 추가 (flush 까지만, 커밋은 호출자 트랜잭션)

        Raises:
            ConflictError: 잔액 스냅샷 불일치 또는 멱등성 키 충돌
        """
        snapshot = self._cached_balance(user_id)
        if points_before != snapshot or points_after != snapshot + points_change:
            raise ConflictError(
                "Ledger entry does not match the current balance snapshot",
                details={
                    "user_id": user_id,
                    "snapshot": snapshot,
                    "points_before": points_before,
                    "points_after": points_after,
                    "points_change": points_change,
                },
            )

        # 사용자별 created_at 단조 증가 보장
        created_at = utc_now()
        last_created_at = self._last_created_at(user_id)
        if last_created_at and last_created_at > created_at:
            created_at = last_created_at

        entry = self.model_class(
            user_id=user_id,
            transaction_type=transaction_type,
            points_change=points_change,
            points_before=points_before,
            points_after=points_after,
            description=description or "",
            reference=reference,
            idempotency_key=idempotency_key,
            entry_metadata=metadata,
            created_at=created_at,
        )
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                "Ledger entry conflicts with an existing entry",
                details={"user_id": user_id, "idempotency_key": idempotency_key},
            ) from e

        return self._to_ledger_entry(entry)

    def get(self, entry_id: int) -> PointsLedgerEntry:
        """원장 항목 단건 조회"""
        entry = self._get_model(entry_id)
        if entry is None:
            raise NotFoundError(f"Ledger entry not found: {entry_id}")
        return self._to_ledger_entry(entry)

    def list_for(
        self, user_id: str, after_id: Optional[int] = None, limit: int = 100
    ) -> List[PointsLedgerEntry]:
        """생성 순서(오름차순) 조회 - after_id 는 재시작 가능한 커서"""
        query = self.db.query(self.model_class).filter(
            self.model_class.user_id == user_id
        )
        if after_id is not None:
            query = query.filter(self.model_class.id > after_id)

        model_instances = query.order_by(asc(self.model_class.id)).limit(limit).all()
        return [self._to_ledger_entry(instance) for instance in model_instances]

    def list_recent(
        self, user_id: str, before_id: Optional[int] = None, limit: int = 50
    ) -> List[PointsLedgerEntry]:
        """최신순 조회 - before_id 이전 항목부터"""
        query = self.db.query(self.model_class).filter(
            self.model_class.user_id == user_id
        )
        if before_id is not None:
            query = query.filter(self.model_class.id < before_id)

        model_instances = query.order_by(desc(self.model_class.id)).limit(limit).all()
        return [self._to_ledger_entry(instance) for instance in model_instances]

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[PointsLedgerEntry]:
        """멱등성 키로 기존 거래 조회"""
        model_instance = (
            self.db.query(self.model_class)
            .filter(self.model_class.idempotency_key == idempotency_key)
            .first()
        )
        return self._to_ledger_entry(model_instance)

    def find_by_reference(
        self, reference: str, transaction_type: Optional[TransactionType] = None
    ) -> List[PointsLedgerEntry]:
        """참조 ID 로 거래 조회 (주문/리포트 추적용)"""
        query = self.db.query(self.model_class).filter(
            self.model_class.reference == reference
        )
        if transaction_type is not None:
            query = query.filter(self.model_class.transaction_type == transaction_type)

        model_instances = query.order_by(asc(self.model_class.id)).all()
        return [self._to_ledger_entry(instance) for instance in model_instances]

    def count_for(self, user_id: str) -> int:
        return (
            self.db.query(func.count(self.model_class.id))
            .filter(self.model_class.user_id == user_id)
            .scalar()
        ) or 0

    def sum_changes(self, user_id: str) -> int:
        """원장 델타 합계 - 잔액의 유일한 진실"""
        result = (
            self.db.query(func.sum(self.model_class.points_change))
            .filter(self.model_class.user_id == user_id)
            .scalar()
        )
        return int(result or 0)

    def last_entry(self, user_id: str) -> Optional[PointsLedgerEntry]:
        model_instance = (
            self.db.query(self.model_class)
            .filter(self.model_class.user_id == user_id)
            .order_by(desc(self.model_class.id))
            .first()
        )
        return self._to_ledger_entry(model_instance)

    def sum_changes_by_user(self) -> Dict[str, int]:
        """전체 사용자별 델타 합계 (전체 정합성 검증용)"""
        rows = (
            self.db.query(
                self.model_class.user_id, func.sum(self.model_class.points_change)
            )
            .group_by(self.model_class.user_id)
            .all()
        )
        return {user_id: int(total or 0) for user_id, total in rows}
