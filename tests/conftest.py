import os

# loyaltyapi.config 를 import 하기 전에 설정 (모듈 로드 시 엔진 생성)
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFICATION_QUEUE_URL"] = ""

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from loyaltyapi.config import Settings  # noqa: E402
from loyaltyapi.models.base import Base  # noqa: E402
from loyaltyapi.models import points, reports, vouchers  # noqa: E402,F401
from loyaltyapi.models.vouchers import Voucher  # noqa: E402
from loyaltyapi.services.point_service import PointService  # noqa: E402
from loyaltyapi.services.reconciliation_service import ReconciliationService  # noqa: E402
from loyaltyapi.services.voucher_service import VoucherService  # noqa: E402
from loyaltyapi.utils.timezone_utils import utc_now  # noqa: E402


@pytest.fixture
def settings():
    return Settings(DATABASE_URL="sqlite://", NOTIFICATION_QUEUE_URL=None)


@pytest.fixture
def engine():
    """테스트마다 새 인메모리 DB"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """서로 다른 연결을 쓰는 세션이 필요한 테스트용 (stale 세션 시나리오)"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'loyalty.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def point_service(db):
    return PointService(db)


@pytest.fixture
def voucher_service(db, settings):
    return VoucherService(db, settings)


@pytest.fixture
def reconciliation_service(db):
    return ReconciliationService(db)


@pytest.fixture
def backdate_voucher(db):
    """바우처 유효기간을 과거로 옮긴다 (시계가 지난 상황 재현)"""

    def _backdate(voucher_id: int, days: int = 1):
        db.query(Voucher).filter(Voucher.id == voucher_id).update(
            {Voucher.expires_at: utc_now() - timedelta(days=days)},
            synchronize_session=False,
        )
        db.commit()

    return _backdate
