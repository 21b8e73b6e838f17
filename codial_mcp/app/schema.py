"""도구 파라미터 스키마를 추상화한 인터페이스예요.

세션은 `ParameterSchema` 프로토콜에만 의존해요. 검증 라이브러리마다 어댑터를
하나씩 두면 돼요. 기본으로 pydantic 어댑터(`PydanticSchema`)를 제공해요.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError

T = TypeVar("T")


@dataclass(slots=True)
class ValidationOutcome(Generic[T]):
    success: bool
    data: T | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)


class ParameterSchema(Protocol):
    def validate(self, value: Any) -> ValidationOutcome[Any]: ...

    def describe(self) -> dict[str, Any]: ...


class PydanticSchema(Generic[T]):
    """pydantic 모델(또는 `TypeAdapter`가 다룰 수 있는 타입)을 감싸는 어댑터예요.

    사용법::

        class AddParams(BaseModel):
            a: int
            b: int

        schema = PydanticSchema(AddParams)
        outcome = schema.validate({"a": 1, "b": 2})
        outcome.data  # AddParams(a=1, b=2)
    """

    def __init__(self, type_: type[T]) -> None:
        self._type = type_
        self._adapter: TypeAdapter[T] = TypeAdapter(type_)

    def validate(self, value: Any) -> ValidationOutcome[T]:
        try:
            data = self._adapter.validate_python(value)
        except ValidationError as exc:
            return ValidationOutcome(success=False, errors=json.loads(exc.json(include_url=False)))
        return ValidationOutcome(success=True, data=data)

    def describe(self) -> dict[str, Any]:
        return self._adapter.json_schema()

    def __repr__(self) -> str:
        return f"PydanticSchema({getattr(self._type, '__name__', self._type)!r})"
