"""リトライ実行エンジン"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


class RetryError(Exception):
    """リトライ上限に達した場合のエラー。"""

    def __init__(self, attempts: int, last_error: Exception | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        msg = f"リトライ上限 ({attempts} 回) に達しました"
        if last_error:
            msg += f": {last_error}"
        super().__init__(msg)
        if last_error is not None:
            self.__cause__ = last_error


@dataclass
class RetryConfig:
    """リトライポリシー設定。"""

    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: bool = True

    def compute_delay(self, attempt: int) -> float:
        """リトライ間隔を秒単位で計算する。"""
        base = self.initial_delay * (self.multiplier**attempt)
        capped = min(base, self.max_delay)
        if self.jitter:
            return capped * (0.9 + random.random() * 0.2)
        return capped


async def with_retry(
    config: RetryConfig,
    fn: Callable[[], Awaitable[T]],
    retryable: Callable[[Exception], bool] | None = None,
) -> T:
    """非同期関数を指数バックオフ付きで最大 max_attempts 回実行する。

    retryable が False を返したエラーはリトライせず、その時点で
    RetryError を送出する。
    """
    last_error: Exception | None = None
    for attempt in range(config.max_attempts):
        try:
            return await fn()
        except Exception as e:
            last_error = e
            if retryable is not None and not retryable(e):
                raise RetryError(attempts=attempt + 1, last_error=e) from e
            if attempt + 1 < config.max_attempts:
                await asyncio.sleep(config.compute_delay(attempt))
    raise RetryError(attempts=config.max_attempts, last_error=last_error)
