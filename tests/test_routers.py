from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from loyaltyapi import deps
from loyaltyapi.config import settings
from loyaltyapi.core.exceptions import (
    AlreadyResolvedError,
    ExpiredError,
    InsufficientBalanceError,
    NotFoundError,
    TransientError,
)
from loyaltyapi.database.session import get_db
from loyaltyapi.main import create_app
from loyaltyapi.models.points import TransactionType
from loyaltyapi.models.reports import ReportStatusEnum
from loyaltyapi.models.vouchers import VoucherStatusEnum
from loyaltyapi.schemas.points import (
    PointsBalanceResponse,
    PointsLedgerEntry,
    PointsLedgerResponse,
    PointsTransactionResult,
)
from loyaltyapi.schemas.reports import MissingPointsReportResponse
from loyaltyapi.schemas.rewards import RewardExchangeResponse
from loyaltyapi.schemas.vouchers import VoucherResponse

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def services():
    return {
        "point": Mock(),
        "voucher": Mock(),
        "reward": Mock(),
        "reconciliation": Mock(),
        "query": Mock(),
    }


@pytest.fixture
def client(services):
    """서비스를 모킹한 테스트 클라이언트"""
    app = create_app()
    app.dependency_overrides[deps.get_point_service] = lambda: services["point"]
    app.dependency_overrides[deps.get_voucher_service] = lambda: services["voucher"]
    app.dependency_overrides[deps.get_reward_service] = lambda: services["reward"]
    app.dependency_overrides[deps.get_reconciliation_service] = lambda: services["reconciliation"]
    app.dependency_overrides[deps.get_query_service] = lambda: services["query"]
    return TestClient(app)


def voucher(**overrides):
    data = {
        "id": 1,
        "user_id": "user-1",
        "code": "VCHABCDEFGH23",
        "value": Decimal("5000"),
        "status": VoucherStatusEnum.ACTIVE,
        "issued_at": NOW,
        "expires_at": NOW,
    }
    data.update(overrides)
    return VoucherResponse(**data)


def report(**overrides):
    data = {
        "id": 3,
        "user_id": "user-1",
        "order_reference": "order-1",
        "expected_points": 300,
        "reason": "missing",
        "status": ReportStatusEnum.REPORTED,
        "created_at": NOW,
    }
    data.update(overrides)
    return MissingPointsReportResponse(**data)


class TestPointRoutes:
    """포인트 라우터 테스트"""

    def test_get_balance(self, client, services):
        # Given
        services["query"].get_balance.return_value = PointsBalanceResponse(
            user_id="user-1", balance=1000
        )

        # When
        response = client.get("/api/v1/points/user-1/balance")

        # Then
        assert response.status_code == 200
        assert response.json() == {"user_id": "user-1", "balance": 1000}
        services["query"].get_balance.assert_called_once_with("user-1")

    def test_get_ledger_passes_cursor(self, client, services):
        services["query"].get_ledger_history.return_value = PointsLedgerResponse(
            user_id="user-1",
            balance=100,
            entries=[
                PointsLedgerEntry(
                    id=9,
                    user_id="user-1",
                    transaction_type=TransactionType.EARN,
                    points_change=100,
                    points_before=0,
                    points_after=100,
                    created_at=NOW,
                )
            ],
            next_cursor=None,
            has_next=False,
        )

        response = client.get("/api/v1/points/user-1/ledger?limit=20&cursor=10")

        assert response.status_code == 200
        assert response.json()["entries"][0]["points_after"] == 100
        services["query"].get_ledger_history.assert_called_once_with(
            "user-1", limit=20, cursor=10
        )

    def test_ledger_limit_is_bounded_by_settings(self, client, services):
        services["query"].get_ledger_history.return_value = PointsLedgerResponse(
            user_id="user-1", balance=0, entries=[], has_next=False
        )
        too_large = settings.LEDGER_PAGE_MAX + 1

        rejected = client.get(f"/api/v1/points/user-1/ledger?limit={too_large}")
        client.get("/api/v1/points/user-1/ledger")

        assert rejected.status_code == 422
        assert rejected.json()["error"]["code"] == "VALIDATION_001"
        services["query"].get_ledger_history.assert_called_once_with(
            "user-1", limit=settings.LEDGER_PAGE_DEFAULT, cursor=None
        )

    @pytest.mark.parametrize("key", ["report:3", "reversal:11"])
    def test_reserved_idempotency_key_is_rejected(self, client, services, key):
        response = client.post(
            "/api/v1/points/user-1/transactions",
            json={"delta": 1, "transaction_type": "earn", "idempotency_key": key},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_001"
        services["point"].apply_delta.assert_not_called()

    def test_apply_transaction(self, client, services):
        services["point"].apply_delta.return_value = PointsTransactionResult(
            entry_id=11,
            user_id="user-1",
            transaction_type=TransactionType.EARN,
            delta=100,
            new_balance=100,
        )

        response = client.post(
            "/api/v1/points/user-1/transactions",
            json={
                "delta": 100,
                "transaction_type": "earn",
                "reference": "order-1",
                "idempotency_key": "order-1",
                "metadata": {"kind": "earn", "order_reference": "order-1"},
            },
        )

        assert response.status_code == 200
        assert response.json()["entry_id"] == 11
        kwargs = services["point"].apply_delta.call_args.kwargs
        assert kwargs["user_id"] == "user-1"
        assert kwargs["idempotency_key"] == "order-1"
        assert kwargs["metadata"].order_reference == "order-1"

    def test_insufficient_balance_envelope(self, client, services):
        services["point"].apply_delta.side_effect = InsufficientBalanceError(
            details={"balance": 10, "delta": -50}
        )

        response = client.post(
            "/api/v1/points/user-1/transactions",
            json={"delta": -50, "transaction_type": "redeem"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "BALANCE_001"
        assert body["error"]["details"] == {"balance": 10, "delta": -50}

    def test_transient_error_is_503(self, client, services):
        services["point"].apply_delta.side_effect = TransientError()

        response = client.post(
            "/api/v1/points/user-1/transactions",
            json={"delta": 5, "transaction_type": "earn"},
        )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "TRANSIENT_001"

    def test_reversal_without_body(self, client, services):
        services["point"].reverse_entry.return_value = PointsTransactionResult(
            entry_id=12,
            user_id="user-1",
            transaction_type=TransactionType.REVERSAL,
            delta=-100,
            new_balance=0,
        )

        response = client.post("/api/v1/points/entries/11/reversal")

        assert response.status_code == 200
        services["point"].reverse_entry.assert_called_once_with(11, description=None)

    def test_unknown_entry_is_404(self, client, services):
        services["point"].get_entry.side_effect = NotFoundError("Ledger entry not found: 5")

        response = client.get("/api/v1/points/entries/5")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND_001"


class TestVoucherRoutes:
    def test_issue(self, client, services):
        services["voucher"].issue.return_value = voucher()

        response = client.post(
            "/api/v1/vouchers",
            json={"user_id": "user-1", "value": "5000", "validity_days": 30},
        )

        assert response.status_code == 201
        assert response.json()["code"] == "VCHABCDEFGH23"

    def test_redeem_expired_is_410(self, client, services):
        services["voucher"].redeem.side_effect = ExpiredError()

        response = client.post("/api/v1/vouchers/redeem", json={"code": "VCHABCDEFGH23"})

        assert response.status_code == 410
        assert response.json()["error"]["code"] == "VOUCHER_EXPIRED"

    def test_cancel(self, client, services):
        services["voucher"].cancel.return_value = voucher(status=VoucherStatusEnum.CANCELLED)

        response = client.post("/api/v1/vouchers/1/cancel", json={"reason": "fraud"})

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        services["voucher"].cancel.assert_called_once_with(1, reason="fraud")


class TestRewardRoutes:
    def test_exchange(self, client, services):
        services["reward"].exchange_points_for_voucher.return_value = RewardExchangeResponse(
            ledger_entry_id=21, balance_after=300, voucher=voucher()
        )

        response = client.post(
            "/api/v1/rewards/exchange",
            json={
                "user_id": "user-1",
                "catalog_item_reference": "catalog-coffee",
                "cost_points": 500,
                "voucher_value": "4500",
            },
        )

        assert response.status_code == 200
        assert response.json()["balance_after"] == 300


class TestReportRoutes:
    def test_file_report(self, client, services):
        services["reconciliation"].file.return_value = report()

        response = client.post(
            "/api/v1/reports",
            json={"user_id": "user-1", "order_reference": "order-1", "expected_points": 300},
        )

        assert response.status_code == 201
        assert response.json()["status"] == "reported"

    def test_resolve_already_resolved_is_409(self, client, services):
        services["reconciliation"].resolve.side_effect = AlreadyResolvedError(
            details={"report_id": 3, "status": "resolved"}
        )

        response = client.post("/api/v1/reports/3/resolve", json={"approved": True})

        assert response.status_code == 409
        body = response.json()
        assert body["error"]["code"] == "REPORT_ALREADY_RESOLVED"
        assert body["error"]["details"]["status"] == "resolved"

    def test_resolve_passes_operator(self, client, services):
        services["reconciliation"].resolve.return_value = report(
            status=ReportStatusEnum.RESOLVED, resolution_ledger_entry_id=8
        )

        response = client.post(
            "/api/v1/reports/3/resolve",
            json={"approved": True, "operator_id": "admin-7", "note": "ok"},
        )

        assert response.status_code == 200
        services["reconciliation"].resolve.assert_called_once_with(
            3, approved=True, operator_id="admin-7", note="ok"
        )


class TestBatchRoutes:
    def test_expire_sweep(self, client, services):
        services["voucher"].expire_due.return_value = 4

        response = client.post("/api/v1/batch/vouchers/expire")

        assert response.status_code == 200
        assert response.json()["expired_count"] == 4

    def test_recover(self, client, services):
        services["reconciliation"].recover_half_applied.return_value = [
            report(status=ReportStatusEnum.RESOLVED, resolution_ledger_entry_id=8)
        ]

        response = client.post("/api/v1/batch/reports/recover")

        assert response.status_code == 200
        assert response.json()["recovered_count"] == 1


class TestHealthRoute:
    def test_health_pings_database(self):
        session = Mock()
        app = create_app()
        app.dependency_overrides[get_db] = lambda: session

        response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "ok"
        session.execute.assert_called_once()
        assert "X-Request-ID" in response.headers
