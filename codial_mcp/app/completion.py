from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from codial_mcp.app.definitions import ArgumentSpec
from codial_mcp.app.utils import maybe_await

EMPTY_COMPLETION: dict[str, Any] = {"values": []}


def match_enum(candidates: Sequence[str], partial: str, *, page_size: int) -> dict[str, Any]:
    """고정 후보 목록에서 부분 입력값과 맞는 후보를 골라요.

    대소문자를 무시한 접두 일치를 먼저, 그다음 부분 문자열 일치를 붙여요.
    결과는 `page_size`개까지만 담고 ``total``에는 전체 일치 개수를 넣어요.
    """
    needle = partial.casefold()
    prefix_matches = [candidate for candidate in candidates if candidate.casefold().startswith(needle)]
    substring_matches = [
        candidate
        for candidate in candidates
        if needle in candidate.casefold() and candidate not in prefix_matches
    ]
    matches = prefix_matches + substring_matches
    return {
        "values": matches[:page_size],
        "total": len(matches),
        "hasMore": len(matches) > page_size,
    }


async def complete_argument(argument: ArgumentSpec | None, partial: str, *, page_size: int) -> dict[str, Any]:
    """인자 설명에 맞춰 자동완성 결과를 만들어요.

    자동완성 함수가 있으면 그 결과를 그대로 넘기고, 없으면 ``enum`` 후보에서 골라요.
    둘 다 없으면 빈 결과예요.
    """
    if argument is None:
        return dict(EMPTY_COMPLETION)
    if argument.complete is not None:
        return dict(await maybe_await(argument.complete(partial)))
    if argument.enum is not None:
        return match_enum(argument.enum, partial, page_size=page_size)
    return dict(EMPTY_COMPLETION)
