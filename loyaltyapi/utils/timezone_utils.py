"""
타임존 유틸리티

모든 저장 시각은 UTC 기준. sqlite 는 tzinfo 를 보존하지 않으므로
DB 에서 읽은 값은 as_utc() 로 정규화한 뒤 비교한다.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """naive datetime 은 UTC 로 간주하여 aware datetime 으로 변환합니다."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
