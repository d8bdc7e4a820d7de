"""TelemetryEmitter — asyncio Task ベースのイベント送信"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from dataclasses import dataclass, field
from types import TracebackType

import structlog

from .engine import AssignmentEngine
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes, TelemetryDeliveryError
from .metrics import (
    delivery_retries_total,
    events_delivered_total,
    events_dropped_total,
    events_enqueued_total,
)
from .models import (
    Assignment,
    TelemetryEvent,
    TelemetryEventType,
    UserContext,
)
from .retry import RetryConfig, RetryError, with_retry
from .sink import EventSink

logger = structlog.stdlib.get_logger(__name__)


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, TelemetryDeliveryError):
        return error.retryable
    return True


@dataclass
class EmitterConfig:
    """TelemetryEmitter 設定。"""

    queue_size: int = 1000
    batch_size: int = 50
    flush_interval_seconds: float = 1.0
    flush_timeout_seconds: float = 2.0
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.INVALID_CONFIG,
                message=f"batch_size must be at least 1, got {self.batch_size}",
            )


class TelemetryEmitter:
    """1 セッション分のエクスポージャー／コンバージョン／メトリクスを送信する。

    record_* は有界キューに積むだけで呼び出し元をブロックせず、例外も
    送出しない。キューが満杯なら新しいイベントを捨てる。バックグラウンドの
    送信ループがバッチ化し、失敗時は指数バックオフで有限回リトライした後に
    バッチを破棄する。

    record_* はイベントループのスレッドから呼び出すこと。エクスポージャーの
    重複排除に使う集合はロックで保護される。
    """

    def __init__(
        self,
        engine: AssignmentEngine,
        sink: EventSink,
        config: EmitterConfig | None = None,
        session_id: str = "",
    ) -> None:
        self._engine = engine
        self._sink = sink
        self._config = config or EmitterConfig()
        self._session_id = session_id
        self._queue: asyncio.Queue[TelemetryEvent] = asyncio.Queue(
            maxsize=self._config.queue_size
        )
        self._exposed: set[tuple[str, str]] = set()
        self._exposed_lock = threading.Lock()
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def pending(self) -> int:
        """送信待ちのイベント数。"""
        return self._queue.qsize()

    def has_exposed(self, identity: str, subject_key: str) -> bool:
        with self._exposed_lock:
            return (identity, subject_key) in self._exposed

    def record_exposure(self, assignment: Assignment, ctx: UserContext) -> bool:
        """エクスポージャーを記録する。

        同一セッション内で (identity, key) ごとに最大 1 回だけ積む。

        Returns:
            新たにイベントを積んだ場合 True
        """
        if self._closed:
            logger.debug("telemetry session closed, event ignored", subject_key=assignment.key)
            return False
        pair = (ctx.identity, assignment.key)
        with self._exposed_lock:
            if pair in self._exposed:
                return False
            self._exposed.add(pair)
        return self._enqueue(
            TelemetryEvent(
                event_type=TelemetryEventType.EXPOSURE,
                subject_key=assignment.key,
                variant_or_enabled=assignment.value,
                identity=ctx.identity,
                session_id=self._session_id or ctx.session_id,
                source=assignment.source,
            )
        )

    def record_conversion(
        self,
        subject_key: str,
        ctx: UserContext,
        metric_name: str | None = None,
        value: float | None = None,
    ) -> bool:
        """コンバージョンを記録する。重複排除はしない。

        metric_name を省略すると ``conversion``、指定すると
        ``conversion_<metric_name>`` として記録する。value の既定値は 1。
        """
        name = "conversion" if metric_name is None else f"conversion_{metric_name}"
        return self._enqueue(
            self._decision_event(
                TelemetryEventType.CONVERSION,
                subject_key,
                ctx,
                name,
                1.0 if value is None else value,
            )
        )

    def record_metric(
        self, subject_key: str, ctx: UserContext, metric_name: str, value: float
    ) -> bool:
        """任意のメトリクスを記録する。重複排除はしない。"""
        return self._enqueue(
            self._decision_event(TelemetryEventType.METRIC, subject_key, ctx, metric_name, value)
        )

    async def start(self) -> None:
        """送信タスクを開始する。"""
        if self._task is None:
            self._closed = False
            self._task = asyncio.create_task(self._delivery_loop())

    async def stop(self) -> None:
        """送信タスクを停止する。キューに残ったイベントは送信しない。"""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def flush(self) -> None:
        """キューが空になり、取り出し済みのバッチの処理が終わるまで待つ。"""
        if self._task is None:
            await self._drain()
            return
        await self._queue.join()

    async def end_session(self, timeout: float | None = None) -> None:
        """セッションを終了する。

        未送信イベントを timeout 秒を上限にベストエフォートで送信し、
        期限を過ぎたら送信を諦める。送信タスクを止め、エクスポージャー
        集合をクリアする。
        """
        deadline = self._config.flush_timeout_seconds if timeout is None else timeout
        self._closed = True
        try:
            await asyncio.wait_for(self.flush(), timeout=deadline)
        except asyncio.TimeoutError:
            abandoned = self._queue.qsize()
            logger.warning(
                "telemetry flush deadline exceeded, abandoning pending events",
                pending=abandoned,
                timeout=deadline,
            )
            events_dropped_total.add(abandoned, {"reason": "flush_timeout"})
        finally:
            await self.stop()
            self._discard_pending()
            with self._exposed_lock:
                self._exposed.clear()

    async def __aenter__(self) -> TelemetryEmitter:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.end_session()

    def _decision_event(
        self,
        event_type: TelemetryEventType,
        subject_key: str,
        ctx: UserContext,
        metric_name: str,
        value: float,
    ) -> TelemetryEvent:
        assignment = self._engine.safe_evaluate(subject_key, ctx)
        return TelemetryEvent(
            event_type=event_type,
            subject_key=subject_key,
            variant_or_enabled=assignment.value,
            identity=ctx.identity,
            metric_name=metric_name,
            value=value,
            session_id=self._session_id or ctx.session_id,
            source=assignment.source,
        )

    def _enqueue(self, event: TelemetryEvent) -> bool:
        if self._closed:
            logger.debug("telemetry session closed, event ignored", subject_key=event.subject_key)
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "telemetry queue full, dropping event",
                subject_key=event.subject_key,
                event_type=str(event.event_type),
            )
            events_dropped_total.add(1, {"reason": "queue_full"})
            return False
        events_enqueued_total.add(1, {"event_type": str(event.event_type)})
        return True

    async def _next_batch(self) -> list[TelemetryEvent]:
        batch = [await self._queue.get()]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.flush_interval_seconds
        while len(batch) < self._config.batch_size:
            if not self._queue.empty():
                batch.append(self._queue.get_nowait())
                continue
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                batch.append(await asyncio.wait_for(self._queue.get(), timeout=remaining))
            except asyncio.TimeoutError:
                break
        return batch

    async def _deliver(self, batch: list[TelemetryEvent]) -> None:
        attempts = 0

        async def send() -> None:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                delivery_retries_total.add(1)
            await self._sink.send(batch)

        try:
            await with_retry(self._config.retry, send, retryable=_is_retryable)
        except RetryError as e:
            logger.error(
                "telemetry batch dropped after retries",
                size=len(batch),
                attempts=e.attempts,
                error=str(e.last_error),
            )
            events_dropped_total.add(len(batch), {"reason": "delivery_failed"})
        else:
            events_delivered_total.add(len(batch))

    async def _delivery_loop(self) -> None:
        """送信ループ。"""
        while True:
            batch = await self._next_batch()
            try:
                await self._deliver(batch)
            finally:
                for _ in batch:
                    self._queue.task_done()

    async def _drain(self) -> None:
        while not self._queue.empty():
            batch: list[TelemetryEvent] = []
            while len(batch) < self._config.batch_size and not self._queue.empty():
                batch.append(self._queue.get_nowait())
            try:
                await self._deliver(batch)
            finally:
                for _ in batch:
                    self._queue.task_done()

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
