"""
포인트 시스템 데이터 모델

이 파일은 사용자 포인트의 모든 거래 내역을 저장하는 원장(Ledger) 테이블과
원장으로부터 언제든 재계산 가능한 잔액 캐시(user_balances)를 정의합니다.
포인트의 추가/차감은 모두 원장에 기록되어 완전한 감사 추적(Audit Trail)을 제공합니다.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from loyaltyapi.models.base import BaseModel, BigIntPK, JSONType


class TransactionType(str, enum.Enum):
    EARN = "earn"  # 주문 완료 적립
    REDEEM = "redeem"  # 카탈로그 교환 차감
    ADJUSTMENT = "adjustment"  # 누락 포인트 승인 등 조정
    EXPIRY = "expiry"  # 포인트 소멸
    REVERSAL = "reversal"  # 기존 거래 취소


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class UserBalance(BaseModel):
    """
    사용자 잔액 캐시 - 원장의 materialized view

    - balance == SUM(points_ledger.points_change) 가 항상 성립해야 함
    - version 은 compare-and-set 토큰 (쓰기마다 1 증가)
    - PointService 외에는 절대 쓰지 않음
    """

    __tablename__ = "user_balances"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_user_balances_non_negative"),)

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PointsLedger(BaseModel):
    """
    포인트 원장 테이블 - 모든 포인트 거래 내역을 저장

    이 테이블은 다음 원칙을 따릅니다:
    1. 불변성(Immutable): 한번 생성된 레코드는 수정/삭제되지 않음 (정정은 reversal/adjustment 신규 행)
    2. 완전성(Complete): 모든 포인트 변동사항이 기록됨
    3. 멱등성(Idempotent): idempotency_key 로 중복 처리 방지
    4. 정합성(Integrity): points_before/points_after 로 잔액 체인 추적
    """

    __tablename__ = "points_ledger"
    __table_args__ = (
        CheckConstraint("points_change <> 0", name="ck_points_ledger_non_zero"),
        CheckConstraint("points_after >= 0", name="ck_points_ledger_after_non_negative"),
        Index("ix_points_ledger_user_id_id", "user_id", "id"),
        Index("ix_points_ledger_reference", "reference"),
    )

    # 기본 키 - 자동 증가하는 고유 식별자 (사용자별 생성 순서 = id 순서)
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # 사용자 ID - 외부 인증 플랫폼이 발급한 식별자
    user_id: Mapped[str] = mapped_column(Text, nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(
            TransactionType,
            name="ledger_transaction_type",
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    # 포인트 변동량 - 양수면 증가, 음수면 감소 (0 불가)
    points_change: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # 거래 전/후 잔액 - 감사 화면 표시용 스냅샷
    points_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    points_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # 이 거래를 유발한 주문/카탈로그/바우처/리포트 참조
    reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # 중복 거래 방지용 키 (예: "report:42", "reversal:17")
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, unique=True
    )

    # 거래 유형별 타입이 정해진 메타데이터 (schemas.points.LedgerMetadata)
    entry_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONType, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
