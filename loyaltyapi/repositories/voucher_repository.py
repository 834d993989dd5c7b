from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from loyaltyapi.models.vouchers import Voucher as VoucherModel, VoucherStatusEnum
from loyaltyapi.repositories.base import BaseRepository
from loyaltyapi.schemas.vouchers import VoucherResponse


class VoucherRepository(BaseRepository[VoucherModel, VoucherResponse]):
    """바우처 리포지토리 - 상태 전이는 모두 조건부 UPDATE 로만 수행"""

    def __init__(self, db: Session):
        super().__init__(VoucherModel, VoucherResponse, db)

    def create(self, **kwargs) -> VoucherResponse:
        return self._to_schema(self._add(**kwargs))

    def code_exists(self, code: str) -> bool:
        return (
            self.db.query(VoucherModel.id).filter(VoucherModel.code == code).first()
            is not None
        )

    def get_by_code(self, code: str) -> Optional[VoucherResponse]:
        model_instance = (
            self.db.query(VoucherModel)
            .filter(VoucherModel.code == code)
            .populate_existing()
            .first()
        )
        return self._to_schema(model_instance)

    def list_for_user(
        self, user_id: str, status: Optional[VoucherStatusEnum] = None
    ) -> List[VoucherResponse]:
        """사용자 바우처 (최근 발급순)"""
        query = self.db.query(VoucherModel).filter(VoucherModel.user_id == user_id)
        if status is not None:
            query = query.filter(VoucherModel.status == status)

        model_instances = query.order_by(
            desc(VoucherModel.issued_at), desc(VoucherModel.id)
        ).all()
        return [self._to_schema(instance) for instance in model_instances]

    def mark_used_if_active(
        self, code: str, now: datetime, order_reference: Optional[str] = None
    ) -> bool:
        """active 이고 아직 유효기간 내일 때만 used 로 전이"""
        return self._compare_and_set(
            [
                VoucherModel.code == code,
                VoucherModel.status == VoucherStatusEnum.ACTIVE,
                VoucherModel.expires_at >= now,
            ],
            {
                VoucherModel.status: VoucherStatusEnum.USED,
                VoucherModel.used_at: now,
                VoucherModel.used_order_reference: order_reference,
                VoucherModel.updated_at: now,
            },
        )

    def mark_expired_if_due(self, voucher_id: int, now: datetime) -> bool:
        """active 이고 유효기간이 지났을 때만 expired 로 전이 (lazy expiry)"""
        return self._compare_and_set(
            [
                VoucherModel.id == voucher_id,
                VoucherModel.status == VoucherStatusEnum.ACTIVE,
                VoucherModel.expires_at < now,
            ],
            {
                VoucherModel.status: VoucherStatusEnum.EXPIRED,
                VoucherModel.expired_at: now,
                VoucherModel.updated_at: now,
            },
        )

    def mark_cancelled_if_active(
        self, voucher_id: int, now: datetime, reason: Optional[str] = None
    ) -> bool:
        return self._compare_and_set(
            [
                VoucherModel.id == voucher_id,
                VoucherModel.status == VoucherStatusEnum.ACTIVE,
                VoucherModel.expires_at >= now,
            ],
            {
                VoucherModel.status: VoucherStatusEnum.CANCELLED,
                VoucherModel.cancelled_at: now,
                VoucherModel.cancel_reason: reason,
                VoucherModel.updated_at: now,
            },
        )

    def expire_due(self, now: datetime) -> int:
        """유효기간이 지난 active 바우처 일괄 만료 - 단방향 전이라 중복 실행 안전"""
        return (
            self.db.query(VoucherModel)
            .filter(
                VoucherModel.status == VoucherStatusEnum.ACTIVE,
                VoucherModel.expires_at < now,
            )
            .update(
                {
                    VoucherModel.status: VoucherStatusEnum.EXPIRED,
                    VoucherModel.expired_at: now,
                    VoucherModel.updated_at: now,
                },
                synchronize_session=False,
            )
        )
