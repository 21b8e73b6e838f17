"""공통 유틸리티 함수예요."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable
from typing import TypeVar, Union

T = TypeVar("T")


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    """동기 콜백과 비동기 콜백의 반환값을 같은 방식으로 다뤄요.

    Args:
        value: 콜백이 돌려준 값이에요. awaitable이면 기다린 결과를 돌려줘요.

    Returns:
        최종 값이에요.
    """
    if inspect.isawaitable(value):
        return await value
    return value  # type: ignore[return-value]


def drop_none(values: dict[str, object]) -> dict[str, object]:
    """값이 ``None``인 키를 뺀 새 딕셔너리를 돌려줘요. 와이어 응답의 선택 필드에 써요."""
    return {key: value for key, value in values.items() if value is not None}
