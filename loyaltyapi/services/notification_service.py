"""
Notification publisher (SQS) with best-effort delivery.
- Never raises exceptions (returns False on failure)
- Called only after the ledger/report transaction has committed
- Disabled when NOTIFICATION_QUEUE_URL is not configured
"""

import logging
from typing import Optional

import boto3
from pydantic import BaseModel

from loyaltyapi.config import Settings
from loyaltyapi.providers.queue.events import (
    LedgerEntryAppendedEvent,
    ReportResolvedEvent,
)
from loyaltyapi.schemas.points import PointsLedgerEntry
from loyaltyapi.schemas.reports import MissingPointsReportResponse

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.queue_url = settings.NOTIFICATION_QUEUE_URL
        self._sqs = None

    @property
    def enabled(self) -> bool:
        return bool(self.queue_url)

    def _client(self):
        if self._sqs is None:
            if self.settings.AWS_ACCESS_KEY_ID and self.settings.AWS_SECRET_ACCESS_KEY:
                self._sqs = boto3.client(
                    "sqs",
                    region_name=self.settings.AWS_REGION,
                    aws_access_key_id=self.settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=self.settings.AWS_SECRET_ACCESS_KEY,
                    endpoint_url=self.settings.SQS_ENDPOINT_URL,
                )
            else:
                self._sqs = boto3.client(
                    "sqs",
                    region_name=self.settings.AWS_REGION,
                    endpoint_url=self.settings.SQS_ENDPOINT_URL,
                )
        return self._sqs

    def publish(
        self,
        event: BaseModel,
        group_id: str,
        deduplication_id: Optional[str] = None,
    ) -> bool:
        """이벤트 발행 - 실패해도 예외를 던지지 않음"""
        if not self.enabled:
            logger.debug(f"Notifications disabled, skipping {type(event).__name__}")
            return False

        params = {
            "QueueUrl": self.queue_url,
            "MessageBody": event.model_dump_json(),
        }
        # FIFO 큐는 사용자 단위로 순서 보장
        if self.queue_url.endswith(".fifo"):
            params["MessageGroupId"] = group_id
            if deduplication_id:
                params["MessageDeduplicationId"] = deduplication_id

        try:
            self._client().send_message(**params)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to publish {type(event).__name__} for group {group_id}: {e}"
            )
            return False

    def ledger_entry_appended(self, entry: PointsLedgerEntry) -> bool:
        event = LedgerEntryAppendedEvent(
            entry_id=entry.id,
            user_id=entry.user_id,
            transaction_type=entry.transaction_type.value,
            points_change=entry.points_change,
            points_after=entry.points_after,
            reference=entry.reference,
            occurred_at=entry.created_at,
        )
        return self.publish(
            event, group_id=entry.user_id, deduplication_id=f"ledger-{entry.id}"
        )

    def report_resolved(self, report: MissingPointsReportResponse) -> bool:
        event = ReportResolvedEvent(
            report_id=report.id,
            user_id=report.user_id,
            status=report.status.value,
            expected_points=report.expected_points,
            resolution_ledger_entry_id=report.resolution_ledger_entry_id,
            occurred_at=report.resolved_at or report.created_at,
        )
        return self.publish(
            event, group_id=report.user_id, deduplication_id=f"report-{report.id}"
        )
