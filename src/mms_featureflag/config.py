"""設定型定義（pydantic BaseModel）"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .models import (
    INTERNAL_SEGMENT,
    ExperimentDefinition,
    FlagDefinition,
    RolloutStage,
)
from .retry import RetryConfig
from .sink import HttpSinkConfig
from .telemetry import EmitterConfig


class FlagSection(BaseModel):
    """フラグ定義。"""

    name: str
    rollout_stage: RolloutStage
    segments: list[str] = Field(default_factory=list)
    description: str = ""
    allowlist: list[str] = Field(default_factory=list)
    blocklist: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)

    def to_definition(self) -> FlagDefinition:
        return FlagDefinition(
            name=self.name,
            rollout_stage=self.rollout_stage,
            segments=frozenset(self.segments),
            description=self.description,
            allowlist=frozenset(self.allowlist),
            blocklist=frozenset(self.blocklist),
            dependencies=tuple(self.dependencies),
        )


class ExperimentSection(BaseModel):
    """実験定義。重みやバリアント数の検証は Registry が行う。"""

    name: str
    variants: list[str]
    weights: list[int]
    active: bool = True
    description: str = ""
    segments: list[str] = Field(default_factory=list)
    start_at: datetime | None = None
    end_at: datetime | None = None
    min_sample_size: int | None = Field(default=None, ge=0)

    def to_definition(self) -> ExperimentDefinition:
        return ExperimentDefinition(
            name=self.name,
            variants=tuple(self.variants),
            weights=tuple(self.weights),
            active=self.active,
            description=self.description,
            segments=frozenset(self.segments),
            start_at=self.start_at,
            end_at=self.end_at,
            min_sample_size=self.min_sample_size,
        )


class RetrySection(BaseModel):
    """送信リトライ設定。"""

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_delay: float = Field(default=0.1, ge=0.0)
    max_delay: float = Field(default=5.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(**self.model_dump())


class TelemetrySection(BaseModel):
    """テレメトリー送信設定。"""

    endpoint: str = ""
    api_key: str = ""
    timeout_seconds: float = Field(default=5.0, gt=0.0)
    queue_size: int = Field(default=1000, ge=1)
    batch_size: int = Field(default=50, ge=1)
    flush_interval_seconds: float = Field(default=1.0, ge=0.0)
    flush_timeout_seconds: float = Field(default=2.0, ge=0.0)
    retry: RetrySection = Field(default_factory=RetrySection)

    def to_emitter_config(self) -> EmitterConfig:
        return EmitterConfig(
            queue_size=self.queue_size,
            batch_size=self.batch_size,
            flush_interval_seconds=self.flush_interval_seconds,
            flush_timeout_seconds=self.flush_timeout_seconds,
            retry=self.retry.to_retry_config(),
        )

    def to_sink_config(self) -> HttpSinkConfig:
        return HttpSinkConfig(
            endpoint=self.endpoint,
            api_key=self.api_key,
            timeout_seconds=self.timeout_seconds,
        )


class LogSection(BaseModel):
    """ログ設定。"""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class FeatureFlagConfig(BaseModel):
    """フィーチャーフラグ設定全体。"""

    internal_segment: str = INTERNAL_SEGMENT
    internal_domains: list[str] = Field(default_factory=list)
    flags: list[FlagSection] = Field(default_factory=list)
    experiments: list[ExperimentSection] = Field(default_factory=list)
    telemetry: TelemetrySection = Field(default_factory=TelemetrySection)
    log: LogSection = Field(default_factory=LogSection)
