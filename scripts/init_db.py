import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text  # noqa: E402

from loyaltyapi.config import settings  # noqa: E402
from loyaltyapi.database.connection import engine  # noqa: E402
from loyaltyapi.models.base import Base  # noqa: E402

# create_all 전에 모든 모델을 메타데이터에 등록
from loyaltyapi.models import points, reports, vouchers  # noqa: E402,F401


def init_db():
    """데이터베이스 초기화 (스키마 + 테이블, 반복 실행 안전)"""
    try:
        if engine.dialect.name == "postgresql":
            with engine.connect() as conn:
                conn.execute(
                    text(f"CREATE SCHEMA IF NOT EXISTS {settings.POSTGRES_SCHEMA}")
                )
                conn.commit()

        Base.metadata.create_all(bind=engine)
        print(
            f"Database initialized successfully with tables: {', '.join(sorted(Base.metadata.tables))}"
        )

    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
