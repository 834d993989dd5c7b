from dependency_injector import containers, providers

from loyaltyapi.config import Settings
from loyaltyapi.database.session import get_db
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.query_service import LoyaltyQueryService
from loyaltyapi.services.reconciliation_service import ReconciliationService
from loyaltyapi.services.reward_service import RewardService
from loyaltyapi.services.voucher_service import VoucherService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class RepositoryModule(containers.DeclarativeContainer):
    """Database session (one per container lifetime; scripts call shutdown_resources)."""

    get_db = providers.Resource(get_db)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies."""

    config = providers.DependenciesContainer()
    repositories = providers.DependenciesContainer()

    notification_service = providers.Singleton(NotificationService, settings=config.config)
    point_service = providers.Factory(
        PointService, db=repositories.get_db, notifier=notification_service
    )
    voucher_service = providers.Factory(
        VoucherService, db=repositories.get_db, settings=config.config
    )
    reward_service = providers.Factory(
        RewardService,
        db=repositories.get_db,
        settings=config.config,
        notifier=notification_service,
    )
    reconciliation_service = providers.Factory(
        ReconciliationService, db=repositories.get_db, notifier=notification_service
    )
    query_service = providers.Factory(LoyaltyQueryService, db=repositories.get_db)


class Container(containers.DeclarativeContainer):
    """Application container (maintenance scripts and batch entrypoints)."""

    config = providers.Container(ConfigModule)
    repositories = providers.Container(RepositoryModule)
    services = providers.Container(
        ServiceModule, config=config, repositories=repositories
    )
