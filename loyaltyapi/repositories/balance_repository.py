"""
잔액 캐시 리포지토리

user_balances 는 원장의 materialized view 이다. 이 리포지토리는
PointService 의 원자적 단위 안에서만 쓰기를 수행한다.
"""

from typing import Dict

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from loyaltyapi.models.points import UserBalance
from loyaltyapi.repositories.base import BaseRepository
from loyaltyapi.schemas.points import BalanceSnapshot
from loyaltyapi.utils.timezone_utils import utc_now


class UserBalanceRepository(BaseRepository[UserBalance, BalanceSnapshot]):
    """잔액 캐시 - 사용자별 행 잠금과 version compare-and-set"""

    def __init__(self, db: Session):
        super().__init__(UserBalance, BalanceSnapshot, db)

    def get_balance(self, user_id: str) -> int:
        """잠금 없이 마지막 커밋된 잔액 조회 (행이 없으면 0)"""
        balance = (
            self.db.query(UserBalance.balance)
            .filter(UserBalance.user_id == user_id)
            .scalar()
        )
        return balance or 0

    def _insert_if_missing(self, user_id: str) -> None:
        """잔액 행이 없으면 0 으로 생성 (동시 생성 경합은 ON CONFLICT 로 흡수)"""
        values = {"user_id": user_id, "balance": 0, "version": 0}
        dialect = self.db.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = pg_insert(UserBalance).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite_insert(UserBalance).values(**values)
        else:
            if self.db.get(UserBalance, user_id) is None:
                self.db.add(UserBalance(**values))
                self.db.flush()
            return

        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["user_id"]))

    def lock_for_update(self, user_id: str) -> BalanceSnapshot:
        """
        사용자 잔액 행을 잠그고 스냅샷 반환

        같은 사용자에 대한 apply_delta 는 이 행 잠금에서 직렬화되며,
        다른 사용자는 서로 다른 행을 잠그므로 서로 막지 않는다.
        """
        self._insert_if_missing(user_id)
        row = (
            self.db.query(UserBalance)
            .filter(UserBalance.user_id == user_id)
            .populate_existing()
            .with_for_update()
            .one()
        )
        return self._to_schema(row)

    def compare_and_set(
        self, user_id: str, expected_version: int, new_balance: int
    ) -> bool:
        """version 이 그대로일 때만 잔액을 갱신"""
        return self._compare_and_set(
            [
                UserBalance.user_id == user_id,
                UserBalance.version == expected_version,
            ],
            {
                UserBalance.balance: new_balance,
                UserBalance.version: UserBalance.version + 1,
                UserBalance.updated_at: utc_now(),
            },
        )

    def all_balances(self) -> Dict[str, int]:
        rows = self.db.query(UserBalance.user_id, UserBalance.balance).all()
        return {user_id: int(balance) for user_id, balance in rows}
