import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from loyaltyapi import deps
from loyaltyapi.config import Settings
from loyaltyapi.models.points import TransactionType
from loyaltyapi.models.reports import ReportStatusEnum
from loyaltyapi.schemas.points import PointsLedgerEntry
from loyaltyapi.schemas.reports import MissingPointsReportResponse
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.services.point_service import PointService


NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger_entry():
    return PointsLedgerEntry(
        id=7,
        user_id="user-1",
        transaction_type=TransactionType.EARN,
        points_change=100,
        points_before=0,
        points_after=100,
        reference="order-1",
        created_at=NOW,
    )


@pytest.fixture
def resolved_report():
    return MissingPointsReportResponse(
        id=3,
        user_id="user-1",
        order_reference="order-1",
        expected_points=300,
        reason="missing",
        status=ReportStatusEnum.RESOLVED,
        created_at=NOW,
        resolved_at=NOW,
        resolution_ledger_entry_id=7,
    )


def make_service(queue_url):
    settings = Settings(
        DATABASE_URL="sqlite://",
        NOTIFICATION_QUEUE_URL=queue_url,
        AWS_REGION="ap-northeast-2",
    )
    return NotificationService(settings)


class TestNotificationService:
    def test_disabled_without_queue(self, ledger_entry):
        service = make_service(None)

        with patch("loyaltyapi.services.notification_service.boto3") as mock_boto3:
            assert service.ledger_entry_appended(ledger_entry) is False

        mock_boto3.client.assert_not_called()

    def test_publishes_ledger_event(self, ledger_entry):
        # Arrange
        service = make_service("https://sqs.ap-northeast-2.amazonaws.com/1/loyalty-events")
        mock_sqs = Mock()
        service._sqs = mock_sqs

        # Act
        sent = service.ledger_entry_appended(ledger_entry)

        # Assert
        assert sent is True
        params = mock_sqs.send_message.call_args.kwargs
        body = json.loads(params["MessageBody"])
        assert body["event_type"] == "ledger.entry_appended"
        assert body["entry_id"] == 7
        assert body["points_after"] == 100
        assert "MessageGroupId" not in params

    def test_fifo_queue_gets_group_and_dedup_ids(self, resolved_report):
        service = make_service("https://sqs.ap-northeast-2.amazonaws.com/1/loyalty.fifo")
        mock_sqs = Mock()
        service._sqs = mock_sqs

        service.report_resolved(resolved_report)

        params = mock_sqs.send_message.call_args.kwargs
        assert params["MessageGroupId"] == "user-1"
        assert params["MessageDeduplicationId"] == "report-3"

    def test_publish_failure_is_swallowed(self, ledger_entry):
        service = make_service("https://sqs.ap-northeast-2.amazonaws.com/1/loyalty-events")
        mock_sqs = Mock()
        mock_sqs.send_message.side_effect = RuntimeError("sqs down")
        service._sqs = mock_sqs

        assert service.ledger_entry_appended(ledger_entry) is False

    def test_failed_notification_keeps_committed_delta(self, db):
        """알림 실패가 커밋된 원장에 영향 없음"""
        notifier = make_service("https://sqs.ap-northeast-2.amazonaws.com/1/loyalty-events")
        mock_sqs = Mock()
        mock_sqs.send_message.side_effect = RuntimeError("sqs down")
        notifier._sqs = mock_sqs
        service = PointService(db, notifier=notifier)

        result = service.apply_delta("user-1", 50, TransactionType.EARN)

        assert result.new_balance == 50
        assert service.get_balance("user-1") == 50
        mock_sqs.send_message.assert_called_once()


def test_dependency_reuses_one_notifier():
    """요청마다 새 클라이언트를 만들지 않음"""
    # Arrange
    deps.get_notification_service.cache_clear()

    # Act
    first = deps.get_notification_service()
    second = deps.get_notification_service()

    # Assert
    assert first is second
    deps.get_notification_service.cache_clear()
