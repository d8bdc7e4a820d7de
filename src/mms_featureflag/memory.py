"""インメモリイベントシンク（テスト用）"""

from __future__ import annotations

import asyncio

from .exceptions import FeatureFlagErrorCodes, TelemetryDeliveryError
from .models import TelemetryEvent
from .sink import EventSink


class InMemoryEventSink(EventSink):
    """テスト用のインメモリイベントシンク。

    fail_times 回までは送信失敗を返し、delay 秒だけ送信を遅延させる。
    """

    def __init__(self, fail_times: int = 0, delay: float = 0.0) -> None:
        self.fail_times = fail_times
        self.delay = delay
        self.attempts = 0
        self.batches: list[list[TelemetryEvent]] = []

    async def send(self, events: list[TelemetryEvent]) -> None:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise TelemetryDeliveryError(
                code=FeatureFlagErrorCodes.DELIVERY_FAILED,
                message="simulated delivery failure",
            )
        self.batches.append(list(events))

    @property
    def events(self) -> list[TelemetryEvent]:
        return [e for batch in self.batches for e in batch]
