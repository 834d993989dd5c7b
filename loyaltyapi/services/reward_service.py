import logging
from typing import Optional

from sqlalchemy.orm import Session

from loyaltyapi.config import Settings
from loyaltyapi.core.exceptions import ValidationError
from loyaltyapi.database.session import transaction_scope
from loyaltyapi.models.points import TransactionType
from loyaltyapi.schemas.points import RedeemMetadata
from loyaltyapi.schemas.rewards import RewardExchangeRequest, RewardExchangeResponse
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.voucher_service import VoucherService

logger = logging.getLogger(__name__)


class RewardService:
    """포인트 → 바우처 교환 서비스"""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.point_service = PointService(db, notifier)
        self.voucher_service = VoucherService(db, settings)

    def exchange_points_for_voucher(
        self, user_id: str, request: RewardExchangeRequest
    ) -> RewardExchangeResponse:
        """포인트 차감과 바우처 발급을 하나의 트랜잭션으로 처리

        발급이 실패하면 차감도 롤백되므로 환불 항목이 필요 없다.

        Args:
            user_id: 사용자 ID
            request: 카탈로그 항목, 차감 포인트, 바우처 금액

        Returns:
            RewardExchangeResponse: 차감 원장 항목 ID, 차감 후 잔액, 발급된 바우처

        Raises:
            InsufficientBalanceError: 잔액 부족 (아무것도 기록되지 않음)
        """
        if request.user_id != user_id:
            raise ValidationError(
                "User ID mismatch between path and request body",
                details={"user_id": user_id, "request_user_id": request.user_id},
            )

        label = request.title or request.catalog_item_reference
        with transaction_scope(self.db):
            debit = self.point_service.apply_delta(
                user_id=user_id,
                delta=-request.cost_points,
                transaction_type=TransactionType.REDEEM,
                reference=request.catalog_item_reference,
                description=f"Reward exchange: {label}",
                metadata=RedeemMetadata(
                    catalog_item_reference=request.catalog_item_reference,
                    voucher_value=request.voucher_value,
                ),
                commit=False,
            )
            voucher = self.voucher_service.issue(
                user_id=user_id,
                value=request.voucher_value,
                validity_days=request.validity_days,
                redemption_reference=request.catalog_item_reference,
                title=request.title,
                ledger_entry_id=debit.entry_id,
                commit=False,
            )

        logger.info(
            f"User {user_id} exchanged {request.cost_points} points for voucher {voucher.id} ({request.catalog_item_reference})"
        )
        self.point_service.notify_appended(debit.entry)

        return RewardExchangeResponse(
            ledger_entry_id=debit.entry_id,
            balance_after=debit.new_balance,
            voucher=voucher,
        )
