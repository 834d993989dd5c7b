import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyaltyapi.config import Settings, get_settings
from loyaltyapi.core.exceptions import (
    ConflictError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from loyaltyapi.database.session import transaction_scope
from loyaltyapi.models.vouchers import VoucherStatusEnum
from loyaltyapi.repositories.voucher_repository import VoucherRepository
from loyaltyapi.schemas.vouchers import VoucherResponse
from loyaltyapi.utils.timezone_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

# 혼동되는 문자(0/O, 1/I/L) 제외
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def present_voucher(
    voucher: VoucherResponse, now: Optional[datetime] = None
) -> VoucherResponse:
    """조회용 표현 - 유효기간이 지난 active 바우처는 쓰기 없이 expired 로 보여준다"""
    now = now or utc_now()
    if voucher.status == VoucherStatusEnum.ACTIVE and as_utc(voucher.expires_at) < now:
        return voucher.model_copy(update={"status": VoucherStatusEnum.EXPIRED})
    return voucher


class VoucherService:
    """바우처 발급/사용/만료 서비스

    상태는 active 에서 used, expired, cancelled 중 하나로 한 번만 이동한다.
    모든 전이는 리포지토리의 조건부 UPDATE 를 통과해야 한다.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.voucher_repo = VoucherRepository(db)

    def _generate_code(self) -> str:
        body = "".join(
            secrets.choice(CODE_ALPHABET)
            for _ in range(self.settings.VOUCHER_CODE_LENGTH)
        )
        return f"{self.settings.VOUCHER_CODE_PREFIX}{body}"

    def _raise_for_status(self, voucher: VoucherResponse) -> None:
        details = {"code": voucher.code, "status": voucher.status.value}
        if voucher.status == VoucherStatusEnum.EXPIRED:
            raise ExpiredError(f"Voucher {voucher.code} has expired", details=details)
        if voucher.status == VoucherStatusEnum.ACTIVE:
            # 다른 요청과 경합 중
            raise ConflictError(
                f"Voucher {voucher.code} changed concurrently", details=details
            )
        raise InvalidStateError(
            f"Voucher {voucher.code} is already {voucher.status.value}",
            details=details,
        )

    def issue(
        self,
        user_id: str,
        value: Decimal,
        validity_days: Optional[int] = None,
        redemption_reference: Optional[str] = None,
        title: Optional[str] = None,
        ledger_entry_id: Optional[int] = None,
        commit: bool = True,
    ) -> VoucherResponse:
        """바우처 발급

        호출자는 이미 포인트를 차감했어야 한다 (검증하지 않음).

        Args:
            user_id: 사용자 ID
            value: 바우처 금액 (> 0)
            validity_days: 유효 기간(일), 생략 시 기본값
            redemption_reference: 카탈로그 교환 참조
            title: 표시용 제목
            ledger_entry_id: 차감 원장 항목 ID
            commit: False 이면 호출자의 트랜잭션에 참여

        Returns:
            VoucherResponse: active 상태의 새 바우처
        """
        if validity_days is None:
            validity_days = self.settings.VOUCHER_DEFAULT_VALIDITY_DAYS
        value = Decimal(str(value))

        if value <= 0:
            raise ValidationError(
                "Voucher value must be positive", details={"value": str(value)}
            )
        if not 1 <= validity_days <= self.settings.VOUCHER_MAX_VALIDITY_DAYS:
            raise ValidationError(
                f"validity_days must be between 1 and {self.settings.VOUCHER_MAX_VALIDITY_DAYS}",
                details={"validity_days": validity_days},
            )

        now = utc_now()
        voucher = None
        with transaction_scope(self.db, commit=commit):
            for attempt in range(1, self.settings.VOUCHER_CODE_MAX_ATTEMPTS + 1):
                code = self._generate_code()
                if self.voucher_repo.code_exists(code):
                    logger.warning(f"Voucher code collision on attempt {attempt}")
                    continue
                try:
                    with self.db.begin_nested():
                        voucher = self.voucher_repo.create(
                            user_id=user_id,
                            code=code,
                            value=value,
                            title=title,
                            status=VoucherStatusEnum.ACTIVE,
                            issued_at=now,
                            expires_at=now + timedelta(days=validity_days),
                            redemption_reference=redemption_reference,
                            ledger_entry_id=ledger_entry_id,
                        )
                    break
                except IntegrityError:
                    logger.warning(f"Voucher code taken concurrently on attempt {attempt}")

            if voucher is None:
                raise ConflictError(
                    "Could not generate a unique voucher code",
                    details={"attempts": self.settings.VOUCHER_CODE_MAX_ATTEMPTS},
                )

        logger.info(
            f"Issued voucher {voucher.id} ({voucher.code}) worth {value} to user {user_id}, expires {voucher.expires_at}"
        )
        return voucher

    def redeem(self, code: str, order_reference: Optional[str] = None) -> VoucherResponse:
        """
        체크아웃에서 바우처 사용 (active → used)

        유효기간이 지난 active 바우처는 먼저 expired 로 전이해 커밋한 뒤
        ExpiredError 를 던진다. 이미 expired 인 바우처도 ExpiredError 이다.
        """
        now = utc_now()
        with transaction_scope(self.db):
            voucher = self.voucher_repo.get_by_code(code)
            if voucher is None:
                raise NotFoundError(f"Voucher not found: {code}")

            redeemed = self.voucher_repo.mark_used_if_active(code, now, order_reference)
            if not redeemed and self.voucher_repo.mark_expired_if_due(voucher.id, now):
                logger.info(f"Voucher {code} lazily expired at redemption")
            voucher = self.voucher_repo.get_by_code(code)

        if not redeemed:
            logger.warning(f"Rejected redemption of voucher {code} in status {voucher.status.value}")
            self._raise_for_status(voucher)

        logger.info(f"Redeemed voucher {code} for user {voucher.user_id} (order={order_reference})")
        return voucher

    def cancel(self, voucher_id: int, reason: Optional[str] = None) -> VoucherResponse:
        """관리자 취소 (active → cancelled)"""
        now = utc_now()
        with transaction_scope(self.db):
            voucher = self.voucher_repo.get_by_id(voucher_id)
            if voucher is None:
                raise NotFoundError(f"Voucher not found: {voucher_id}")

            cancelled = self.voucher_repo.mark_cancelled_if_active(voucher_id, now, reason)
            if not cancelled:
                self.voucher_repo.mark_expired_if_due(voucher_id, now)
            voucher = self.voucher_repo.get_by_id(voucher_id)

        if not cancelled:
            self._raise_for_status(voucher)

        logger.info(f"Cancelled voucher {voucher.code} for user {voucher.user_id}: {reason}")
        return voucher

    def expire_due(self, now: Optional[datetime] = None) -> int:
        """유효기간이 지난 active 바우처 일괄 만료 (배치용, 반복 실행 안전)"""
        now = now or utc_now()
        with transaction_scope(self.db):
            expired_count = self.voucher_repo.expire_due(now)

        logger.info(f"Expired {expired_count} vouchers due before {now.isoformat()}")
        return expired_count

    def get_by_code(self, code: str) -> VoucherResponse:
        voucher = self.voucher_repo.get_by_code(code)
        if voucher is None:
            raise NotFoundError(f"Voucher not found: {code}")
        return present_voucher(voucher)

    def get(self, voucher_id: int) -> VoucherResponse:
        voucher = self.voucher_repo.get_by_id(voucher_id)
        if voucher is None:
            raise NotFoundError(f"Voucher not found: {voucher_id}")
        return present_voucher(voucher)
