import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from loyaltyapi.core.exceptions import TransientError
from loyaltyapi.database.connection import SessionLocal

logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            db.rollback()
        raise
    finally:
        db.close()


def apply_local_timeout(db: Session, timeout_ms: Optional[int]) -> None:
    """호출자가 지정한 타임아웃을 현재 트랜잭션에만 적용 (PostgreSQL 전용)"""
    if not timeout_ms:
        return
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
    db.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))


@contextmanager
def transaction_scope(
    db: Session, commit: bool = True, timeout_ms: Optional[int] = None
) -> Iterator[Session]:
    """하나의 원자적 작업 단위

    - commit=True: 블록이 끝나면 커밋, 예외가 나면 롤백 (부분 상태가 남지 않음)
    - commit=False: 바깥 호출자가 트랜잭션을 소유 (커밋/롤백 모두 호출자 책임)
    - 스토리지 타임아웃/연결 오류는 TransientError 로 변환
    """
    try:
        if commit:
            apply_local_timeout(db, timeout_ms)
        yield db
        if commit:
            db.commit()
    except (OperationalError, PoolTimeoutError) as e:
        if commit:
            db.rollback()
        logger.error(f"Storage failure, outcome unknown: {str(e)}")
        raise TransientError(
            "Storage operation failed or timed out; re-query state before retrying",
            details={"cause": type(e).__name__},
        ) from e
    except Exception:
        if commit:
            db.rollback()
        raise
