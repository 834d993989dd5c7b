from abc import ABC
from typing import TypeVar, Generic, Optional, List, Dict, Any, Type
from sqlalchemy.orm import Session
from pydantic import BaseModel

T = TypeVar("T")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[T, SchemaType], ABC):
    """모든 리포지토리의 베이스 클래스 - Pydantic 응답 보장

    리포지토리는 flush 까지만 수행한다. 커밋/롤백은 서비스의
    transaction_scope 가 소유한다.
    """

    def __init__(
        self, model_class: Type[T], schema_class: Type[SchemaType], db: Session
    ):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, model_instance: Any) -> Optional[SchemaType]:
        """SQLAlchemy 모델을 Pydantic 스키마로 변환"""
        if model_instance is None:
            return None

        # Pydantic v2의 model_validate를 사용하여 from_attributes 활용
        return self.schema_class.model_validate(model_instance)

    def _get_model(self, id: Any, for_update: bool = False) -> Optional[T]:
        """ID로 모델 조회 - 벌크 UPDATE 이후에도 최신 값을 보도록 populate_existing"""
        query = (
            self.db.query(self.model_class)
            .filter(getattr(self.model_class, "id") == id)
            .populate_existing()
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_id(self, id: Any) -> Optional[SchemaType]:
        """ID로 조회 - Pydantic 스키마 반환"""
        return self._to_schema(self._get_model(id))

    def _add(self, **kwargs) -> T:
        """새 레코드 추가 (flush 만 수행)"""
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        self.db.flush()
        self.db.refresh(instance)
        return instance

    def _compare_and_set(
        self, filters: List[Any], values: Dict[Any, Any]
    ) -> bool:
        """조건부 UPDATE - 정확히 한 행이 바뀌었을 때만 True

        상태 전이의 유일한 관문. 동시에 같은 전이를 시도하면 한쪽만 성공한다.
        """
        updated = (
            self.db.query(self.model_class)
            .filter(*filters)
            .update(values, synchronize_session=False)
        )
        return updated == 1
