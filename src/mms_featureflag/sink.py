"""テレメトリーイベントの送信先"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from .exceptions import FeatureFlagErrorCodes, TelemetryDeliveryError
from .models import TelemetryEvent


class EventSink(ABC):
    """テレメトリーイベントの送信先抽象基底クラス。"""

    @abstractmethod
    async def send(self, events: list[TelemetryEvent]) -> None:
        """イベントのバッチを送信する。失敗時は TelemetryDeliveryError を送出する。"""
        ...


@dataclass
class HttpSinkConfig:
    """HTTP シンク設定。"""

    endpoint: str
    api_key: str = ""
    timeout_seconds: float = 5.0


class HttpEventSink(EventSink):
    """httpx を使って分析バックエンドへ JSON でバッチ送信するシンク。"""

    def __init__(self, config: HttpSinkConfig) -> None:
        self._config = config
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if config.api_key:
            headers["X-API-Key"] = config.api_key
        self._headers = headers

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers, timeout=self._config.timeout_seconds)

    async def send(self, events: list[TelemetryEvent]) -> None:
        payload = {"events": [e.to_dict() for e in events]}
        try:
            async with self._make_client() as client:
                resp = await client.post(self._config.endpoint, json=payload)
        except Exception as e:
            raise TelemetryDeliveryError(
                code=FeatureFlagErrorCodes.DELIVERY_FAILED,
                message=f"Failed to send telemetry batch: {e}",
                cause=e,
            ) from e
        if resp.status_code >= 400:
            raise TelemetryDeliveryError(
                code=FeatureFlagErrorCodes.HTTP_ERROR,
                message=f"send: HTTP {resp.status_code}: {resp.text}",
                retryable=_is_transient_status(resp.status_code),
            )


def _is_transient_status(status_code: int) -> bool:
    """再送で回復し得るステータスなら True（5xx, 408, 429）。"""
    return status_code >= 500 or status_code in (408, 429)
