from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from loyaltyapi.config import settings


def build_engine(database_url: str = None, **overrides):
    """설정값으로 엔진 생성 - sqlite(테스트)와 postgresql 모두 지원"""
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
    else:
        # 세션마다 스키마와 타임아웃을 강제하여 무한 대기를 방지
        options = (
            f"-csearch_path={settings.POSTGRES_SCHEMA} "
            f"-cstatement_timeout={settings.DB_STATEMENT_TIMEOUT_MS} "
            f"-clock_timeout={settings.DB_LOCK_TIMEOUT_MS}"
        )
        kwargs = {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
            "pool_pre_ping": True,  # 연결 유효성 검사
            "pool_recycle": 3600,  # 1시간마다 연결 재생성
            "connect_args": {"options": options},
        }

    kwargs["echo"] = settings.DEBUG  # 디버그 모드에서 SQL 로깅
    kwargs.update(overrides)
    return create_engine(url, **kwargs)


engine = build_engine()

# Use expire_on_commit=False to avoid DetachedInstanceError when accessing
# attributes after commit within the same request scope (common FastAPI pattern).
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)
