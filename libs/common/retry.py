from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """고정 간격으로 최대 `max_attempts`번 기다리는 재시도 정책이에요.

    `sleep`을 주입할 수 있어서 테스트에서 실제 타이머 없이 검증할 수 있어요.
    """

    max_attempts: int = 10
    interval_seconds: float = 0.1
    sleep: SleepFunc = field(default=asyncio.sleep)


async def poll_until(predicate: Callable[[], bool], *, policy: RetryPolicy) -> bool:
    """`predicate`가 참이 될 때까지 정책에 따라 기다려요.

    Returns:
        제한 안에 조건이 충족되면 ``True``, 끝내 충족되지 않으면 ``False``예요.
    """
    for _ in range(policy.max_attempts):
        if predicate():
            return True
        await policy.sleep(policy.interval_seconds)
    return predicate()
