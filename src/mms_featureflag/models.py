"""featureflag データモデル"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

VariantName = str
SegmentId = str
OverrideValue = str | bool

INTERNAL_SEGMENT: SegmentId = "internal"


class RolloutStage(StrEnum):
    """ロールアウト段階。"""

    INTERNAL = "internal"
    BETA = "beta"
    GRADUAL_25 = "gradual25"
    GRADUAL_50 = "gradual50"
    GRADUAL_100 = "gradual100"
    FULL = "full"
    OFF = "off"

    @property
    def percentage(self) -> int:
        """段階に対応する標準トラフィック割合 (0-100)。

        internal は 100 だが内部セグメントに限定される。
        """
        return _STAGE_PERCENTAGES[self]


_STAGE_PERCENTAGES: dict[RolloutStage, int] = {
    RolloutStage.INTERNAL: 100,
    RolloutStage.BETA: 10,
    RolloutStage.GRADUAL_25: 25,
    RolloutStage.GRADUAL_50: 50,
    RolloutStage.GRADUAL_100: 100,
    RolloutStage.FULL: 100,
    RolloutStage.OFF: 0,
}


class AssignmentKind(StrEnum):
    """評価対象の種別。"""

    FLAG = "flag"
    EXPERIMENT = "experiment"


class AssignmentSource(StrEnum):
    """評価結果の出所。"""

    OVERRIDE = "override"
    COMPUTED = "computed"
    DEFAULT = "default"


@dataclass(frozen=True)
class FlagDefinition:
    """フィーチャーフラグ定義。読み込み後は不変。"""

    name: str
    rollout_stage: RolloutStage
    segments: frozenset[SegmentId] = frozenset()
    description: str = ""
    allowlist: frozenset[str] = frozenset()
    blocklist: frozenset[str] = frozenset()
    dependencies: tuple[str, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.rollout_stage != RolloutStage.OFF


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(frozen=True)
class ExperimentDefinition:
    """実験定義。variants[0] がコントロール。"""

    name: str
    variants: tuple[VariantName, ...]
    weights: tuple[int, ...]
    active: bool = True
    description: str = ""
    segments: frozenset[SegmentId] = frozenset()
    start_at: datetime | None = None
    end_at: datetime | None = None
    min_sample_size: int | None = None

    def __post_init__(self) -> None:
        # タイムゾーンなしの日時は UTC とみなす
        object.__setattr__(self, "start_at", _as_utc(self.start_at))
        object.__setattr__(self, "end_at", _as_utc(self.end_at))

    @property
    def control(self) -> VariantName:
        return self.variants[0]

    def is_running(self, now: datetime) -> bool:
        """active かつ実施期間内であれば True。"""
        if not self.active:
            return False
        if self.start_at is not None and now < self.start_at:
            return False
        if self.end_at is not None and now > self.end_at:
            return False
        return True


@dataclass(frozen=True)
class UserContext:
    """評価コンテキスト。エンジンは変更しない。"""

    session_id: str
    user_id: str | None = None
    email: str | None = None
    segments: frozenset[SegmentId] = frozenset()
    overrides: Mapping[str, OverrideValue] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        """バケット計算に使う識別子。user_id がなければ session_id。"""
        return self.user_id or self.session_id


@dataclass(frozen=True)
class Assignment:
    """評価結果。呼び出しごとに生成され、永続化されない。"""

    key: str
    kind: AssignmentKind
    value: bool | VariantName
    source: AssignmentSource
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class TelemetryEventType(StrEnum):
    """テレメトリーイベント種別。"""

    EXPOSURE = "exposure"
    CONVERSION = "conversion"
    METRIC = "metric"


@dataclass
class TelemetryEvent:
    """エクスポージャー／コンバージョン／メトリクスイベント。

    スキーマは追記のみ。既存フィールドの意味は変えない。
    """

    event_type: TelemetryEventType
    subject_key: str
    variant_or_enabled: bool | VariantName
    identity: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metric_name: str | None = None
    value: float | None = None
    session_id: str = ""
    source: AssignmentSource | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        """送信用の辞書に変換する。"""
        data: dict[str, Any] = {
            "event_id": self.event_id,
            "event_type": str(self.event_type),
            "subject_key": self.subject_key,
            "variant_or_enabled": self.variant_or_enabled,
            "identity": self.identity,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
        }
        if self.metric_name is not None:
            data["metric_name"] = self.metric_name
        if self.value is not None:
            data["value"] = self.value
        if self.source is not None:
            data["source"] = str(self.source)
        return data
