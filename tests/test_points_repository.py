import pytest

from loyaltyapi.core.exceptions import ConflictError, NotFoundError
from loyaltyapi.models.points import PointsLedger, TransactionType
from loyaltyapi.repositories.points_repository import PointsRepository


@pytest.fixture
def points_repo(db):
    return PointsRepository(db)


class TestAppend:
    """원장 append 는 잔액 스냅샷과 맞아야 한다"""

    def test_append_outside_balance_service_is_rejected(self, db, points_repo):
        # 캐시 잔액은 0 인데 before=100 으로 기록 시도
        with pytest.raises(ConflictError) as exc_info:
            points_repo.append(
                "user-1",
                TransactionType.ADJUSTMENT,
                points_change=10,
                points_before=100,
                points_after=110,
            )

        assert exc_info.value.details["snapshot"] == 0
        assert db.query(PointsLedger).count() == 0

    def test_append_with_wrong_after_is_rejected(self, points_repo):
        with pytest.raises(ConflictError):
            points_repo.append(
                "user-1",
                TransactionType.ADJUSTMENT,
                points_change=10,
                points_before=0,
                points_after=11,
            )

    def test_get_unknown_entry(self, points_repo):
        with pytest.raises(NotFoundError):
            points_repo.get(12345)


class TestListing:
    def test_list_for_resumes_after_cursor(self, point_service, points_repo):
        for delta in (1, 2, 3, 4):
            point_service.apply_delta("user-1", delta, TransactionType.EARN)
        point_service.apply_delta("user-2", 99, TransactionType.EARN)

        first = points_repo.list_for("user-1", limit=2)
        rest = points_repo.list_for("user-1", after_id=first[-1].id, limit=10)

        assert [e.points_change for e in first] == [1, 2]
        assert [e.points_change for e in rest] == [3, 4]

    def test_find_by_reference_filters_type(self, point_service, points_repo):
        point_service.apply_delta(
            "user-1", 500, TransactionType.EARN, reference="order-1"
        )
        point_service.apply_delta(
            "user-1", -200, TransactionType.REDEEM, reference="order-1"
        )
        point_service.apply_delta(
            "user-1", 10, TransactionType.EARN, reference="order-2"
        )

        everything = points_repo.find_by_reference("order-1")
        earned = points_repo.find_by_reference("order-1", TransactionType.EARN)

        assert [e.points_change for e in everything] == [500, -200]
        assert [e.points_change for e in earned] == [500]

    def test_drift_aggregates(self, point_service, points_repo):
        point_service.apply_delta("user-1", 30, TransactionType.EARN)
        point_service.apply_delta("user-1", -10, TransactionType.REDEEM)
        point_service.apply_delta("user-2", 5, TransactionType.EARN)

        assert points_repo.sum_changes("user-1") == 20
        assert points_repo.count_for("user-1") == 2
        assert points_repo.sum_changes_by_user() == {"user-1": 20, "user-2": 5}
