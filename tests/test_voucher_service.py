from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from loyaltyapi.core.exceptions import (
    ConflictError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from loyaltyapi.models.vouchers import Voucher, VoucherStatusEnum
from loyaltyapi.services.voucher_service import CODE_ALPHABET, VoucherService
from loyaltyapi.utils.timezone_utils import as_utc, utc_now


class TestIssue:
    def test_issue_creates_active_voucher(self, voucher_service, settings):
        # Act
        voucher = voucher_service.issue(
            "user-1",
            Decimal("5000"),
            validity_days=30,
            redemption_reference="catalog-7",
            title="Coffee voucher",
        )

        # Assert
        assert voucher.status == VoucherStatusEnum.ACTIVE
        assert voucher.value == Decimal("5000")
        assert voucher.code.startswith(settings.VOUCHER_CODE_PREFIX)
        body = voucher.code[len(settings.VOUCHER_CODE_PREFIX):]
        assert len(body) == settings.VOUCHER_CODE_LENGTH
        assert set(body) <= set(CODE_ALPHABET)
        lifetime = as_utc(voucher.expires_at) - as_utc(voucher.issued_at)
        assert lifetime == timedelta(days=30)

    def test_codes_are_unique(self, voucher_service):
        codes = {voucher_service.issue("user-1", 1000, 10).code for _ in range(20)}
        assert len(codes) == 20

    def test_default_validity_is_applied(self, voucher_service, settings):
        voucher = voucher_service.issue("user-1", 1000)

        lifetime = as_utc(voucher.expires_at) - as_utc(voucher.issued_at)
        assert lifetime == timedelta(days=settings.VOUCHER_DEFAULT_VALIDITY_DAYS)

    @pytest.mark.parametrize("value, validity_days", [(0, 10), (-5, 10), (1000, 0), (1000, 366)])
    def test_invalid_input_is_rejected(self, db, voucher_service, value, validity_days):
        with pytest.raises(ValidationError):
            voucher_service.issue("user-1", value, validity_days)

        assert db.query(Voucher).count() == 0

    def test_code_collision_is_retried(self, voucher_service):
        """이미 있는 코드가 생성되면 다시 생성"""
        existing = voucher_service.issue("user-1", 1000, 10)

        with patch.object(
            voucher_service,
            "_generate_code",
            side_effect=[existing.code, "VCHFRESHCODE1"],
        ):
            voucher = voucher_service.issue("user-2", 1000, 10)

        assert voucher.code == "VCHFRESHCODE1"

    def test_exhausted_code_attempts_conflict(self, db, voucher_service, settings):
        existing = voucher_service.issue("user-1", 1000, 10)

        with patch.object(voucher_service, "_generate_code", return_value=existing.code):
            with pytest.raises(ConflictError):
                voucher_service.issue("user-2", 1000, 10)

        assert db.query(Voucher).count() == 1


class TestRedeem:
    def test_redeem_active_voucher(self, voucher_service):
        issued = voucher_service.issue("user-1", 1000, 10)

        redeemed = voucher_service.redeem(issued.code, order_reference="order-55")

        assert redeemed.status == VoucherStatusEnum.USED
        assert redeemed.used_order_reference == "order-55"
        assert redeemed.used_at is not None

    def test_second_redeem_is_invalid_state(self, voucher_service):
        """사용된 바우처는 다시 사용할 수 없음"""
        issued = voucher_service.issue("user-1", 1000, 10)
        voucher_service.redeem(issued.code)

        with pytest.raises(InvalidStateError):
            voucher_service.redeem(issued.code)

        assert voucher_service.get(issued.id).status == VoucherStatusEnum.USED

    def test_unknown_code_is_not_found(self, voucher_service):
        with pytest.raises(NotFoundError):
            voucher_service.redeem("VCHNOPE")

    def test_past_expiry_is_lazily_expired_and_committed(
        self, db, voucher_service, backdate_voucher
    ):
        """유효기간이 지난 바우처 사용 시 expired 로 전이가 커밋된 뒤 ExpiredError"""
        issued = voucher_service.issue("user-1", 1000, 10)
        backdate_voucher(issued.id)

        with pytest.raises(ExpiredError):
            voucher_service.redeem(issued.code)

        db.expire_all()
        stored = db.get(Voucher, issued.id)
        assert stored.status == VoucherStatusEnum.EXPIRED
        assert stored.expired_at is not None

    def test_repeated_redeem_of_expired_voucher_is_idempotent(
        self, db, voucher_service, backdate_voucher
    ):
        issued = voucher_service.issue("user-1", 1000, 10)
        backdate_voucher(issued.id)

        with pytest.raises(ExpiredError):
            voucher_service.redeem(issued.code)
        first_expired_at = voucher_service.get(issued.id).expired_at

        with pytest.raises(ExpiredError):
            voucher_service.redeem(issued.code)

        assert voucher_service.get(issued.id).expired_at == first_expired_at

    def test_cancelled_voucher_cannot_be_redeemed(self, voucher_service):
        issued = voucher_service.issue("user-1", 1000, 10)
        voucher_service.cancel(issued.id, reason="fraud")

        with pytest.raises(InvalidStateError):
            voucher_service.redeem(issued.code)

    def test_two_sessions_redeem_once(self, file_session_factory, settings):
        """두 체크아웃이 같은 코드를 본 상태에서 사용 - 한쪽만 성공"""
        # Arrange
        session_a = file_session_factory()
        session_b = file_session_factory()
        service_a = VoucherService(session_a, settings)
        service_b = VoucherService(session_b, settings)
        issued = service_a.issue("user-1", 1000, 10)
        assert service_b.get_by_code(issued.code).status == VoucherStatusEnum.ACTIVE

        # Act
        used = service_a.redeem(issued.code, order_reference="order-a")
        with pytest.raises(InvalidStateError):
            service_b.redeem(issued.code, order_reference="order-b")

        # Assert
        assert used.status == VoucherStatusEnum.USED
        current = service_b.get_by_code(issued.code)
        assert current.status == VoucherStatusEnum.USED
        assert current.used_order_reference == "order-a"
        session_a.close()
        session_b.close()


class TestCancel:
    def test_cancel_active_voucher(self, voucher_service):
        issued = voucher_service.issue("user-1", 1000, 10)

        cancelled = voucher_service.cancel(issued.id, reason="customer request")

        assert cancelled.status == VoucherStatusEnum.CANCELLED
        assert cancelled.cancel_reason == "customer request"

    def test_used_voucher_cannot_be_cancelled(self, voucher_service):
        issued = voucher_service.issue("user-1", 1000, 10)
        voucher_service.redeem(issued.code)

        with pytest.raises(InvalidStateError):
            voucher_service.cancel(issued.id)

    def test_cancel_past_expiry_expires(self, voucher_service, backdate_voucher):
        issued = voucher_service.issue("user-1", 1000, 10)
        backdate_voucher(issued.id)

        with pytest.raises(ExpiredError):
            voucher_service.cancel(issued.id)

        assert voucher_service.get(issued.id).status == VoucherStatusEnum.EXPIRED

    def test_unknown_voucher_is_not_found(self, voucher_service):
        with pytest.raises(NotFoundError):
            voucher_service.cancel(12345)


class TestExpiry:
    def test_sweep_expires_only_due_active_vouchers(self, voucher_service, backdate_voucher):
        due = voucher_service.issue("user-1", 1000, 10)
        fresh = voucher_service.issue("user-1", 1000, 10)
        used = voucher_service.issue("user-1", 1000, 10)
        voucher_service.redeem(used.code)
        backdate_voucher(due.id)
        backdate_voucher(used.id)

        expired_count = voucher_service.expire_due()

        assert expired_count == 1
        assert voucher_service.get(due.id).status == VoucherStatusEnum.EXPIRED
        assert voucher_service.get(fresh.id).status == VoucherStatusEnum.ACTIVE
        assert voucher_service.get(used.id).status == VoucherStatusEnum.USED

    def test_sweep_is_idempotent(self, voucher_service, backdate_voucher):
        due = voucher_service.issue("user-1", 1000, 10)
        backdate_voucher(due.id)

        assert voucher_service.expire_due() == 1
        assert voucher_service.expire_due() == 0

    def test_sweep_with_future_clock(self, voucher_service):
        voucher_service.issue("user-1", 1000, 10)

        assert voucher_service.expire_due(utc_now() + timedelta(days=11)) == 1

    def test_read_presents_past_expiry_as_expired_without_writing(
        self, db, voucher_service, backdate_voucher
    ):
        """조회는 expired 로 보여주지만 저장 상태는 그대로"""
        issued = voucher_service.issue("user-1", 1000, 10)
        backdate_voucher(issued.id)

        assert voucher_service.get_by_code(issued.code).status == VoucherStatusEnum.EXPIRED

        db.expire_all()
        assert db.get(Voucher, issued.id).status == VoucherStatusEnum.ACTIVE
