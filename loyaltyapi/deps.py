from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from loyaltyapi.config import settings
from loyaltyapi.database.session import get_db

# Services
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.query_service import LoyaltyQueryService
from loyaltyapi.services.reconciliation_service import ReconciliationService
from loyaltyapi.services.reward_service import RewardService
from loyaltyapi.services.voucher_service import VoucherService


@lru_cache
def get_notification_service() -> NotificationService:
    """프로세스당 하나 (boto3 클라이언트 재사용)"""
    return NotificationService(settings=settings)


def get_point_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
) -> PointService:
    return PointService(db=db, notifier=notifier)


def get_voucher_service(db: Session = Depends(get_db)) -> VoucherService:
    return VoucherService(db=db, settings=settings)


def get_reward_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
) -> RewardService:
    return RewardService(db=db, settings=settings, notifier=notifier)


def get_reconciliation_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
) -> ReconciliationService:
    return ReconciliationService(db=db, notifier=notifier)


def get_query_service(db: Session = Depends(get_db)) -> LoyaltyQueryService:
    return LoyaltyQueryService(db=db)
