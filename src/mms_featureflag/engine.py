"""割り当てエンジン"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from .exceptions import FeatureFlagError
from .hasher import Hasher, MurmurHasher
from .models import (
    Assignment,
    AssignmentKind,
    AssignmentSource,
    ExperimentDefinition,
    FlagDefinition,
    UserContext,
    VariantName,
)
from .override import OverrideResolver
from .registry import Registry
from .rollout import RolloutPolicy
from .variant import VariantSelector

logger = structlog.stdlib.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AssignmentEngine:
    """Registry, Hasher, RolloutPolicy, VariantSelector, OverrideResolver を
    組み合わせた評価の入口。

    evaluate は Registry と ctx だけに依存する純粋な処理で、テレメトリーを
    送出しない。共有される可変状態を持たないため、複数セッションから
    ロックなしで同時に呼び出せる。
    """

    def __init__(
        self,
        registry: Registry,
        hasher: Hasher | None = None,
        rollout: RolloutPolicy | None = None,
        selector: VariantSelector | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._hasher = hasher or MurmurHasher()
        self._rollout = rollout or RolloutPolicy(
            internal_segment=registry.internal_segment,
            internal_domains=registry.internal_domains,
        )
        self._selector = selector or VariantSelector()
        self._overrides = OverrideResolver(registry)
        self._now = now or _utcnow

    @property
    def registry(self) -> Registry:
        return self._registry

    def evaluate(self, key: str, ctx: UserContext) -> Assignment:
        """key をコンテキストに対して評価する。

        未知のキーや非アクティブな定義は例外にせず、フラグなら False、
        実験ならコントロールを source=default で返す。

        Raises:
            FeatureFlagError: オーバーライド値が不正な場合 (INVALID_OVERRIDE)
        """
        flag = self._registry.find_flag(key)
        if flag is not None:
            return self._evaluate_flag(flag, ctx)
        experiment = self._registry.find_experiment(key)
        if experiment is not None:
            return self._evaluate_experiment(experiment, ctx)

        logger.warning("unknown feature key, falling back to default", key=key)
        return self._assignment(key, AssignmentKind.FLAG, False, AssignmentSource.DEFAULT)

    def safe_evaluate(self, key: str, ctx: UserContext) -> Assignment:
        """evaluate と同じだが、どのエラーでもベースラインにフォールバックする。"""
        try:
            return self.evaluate(key, ctx)
        except FeatureFlagError as e:
            logger.error(
                "feature evaluation failed, falling back to default",
                key=key,
                code=e.code,
                error=str(e),
            )
            return self._default_for(key)
        except Exception:
            logger.exception("unexpected error during feature evaluation", key=key)
            return self._default_for(key)

    def list_active_assignments(self, ctx: UserContext) -> list[Assignment]:
        """登録済みの全フラグ／実験の現在の判定を返す。副作用なし。"""
        return [self.safe_evaluate(key, ctx) for key in self._registry.keys()]

    def flag_states(self, ctx: UserContext) -> dict[str, bool]:
        """全フラグの有効／無効を返す（分析用スナップショット）。"""
        return {flag.name: self.is_enabled(flag.name, ctx) for flag in self._registry.flags}

    def is_enabled(self, key: str, ctx: UserContext) -> bool:
        assignment = self.safe_evaluate(key, ctx)
        return assignment.kind == AssignmentKind.FLAG and assignment.value is True

    def get_variant(self, key: str, ctx: UserContext) -> VariantName | None:
        """実験のバリアントを返す。key が実験でなければ None。"""
        if self._registry.find_experiment(key) is None:
            logger.warning("unknown experiment", key=key)
            return None
        value = self.safe_evaluate(key, ctx).value
        return value if isinstance(value, str) else None

    def has_variant(self, key: str, variant: VariantName, ctx: UserContext) -> bool:
        return self.get_variant(key, ctx) == variant

    def is_in_treatment(self, key: str, ctx: UserContext) -> bool:
        """実施中の実験でコントロール以外のバリアントなら True。"""
        experiment = self._registry.find_experiment(key)
        if experiment is None:
            return False
        return self.get_variant(key, ctx) != experiment.control

    def _evaluate_flag(self, flag: FlagDefinition, ctx: UserContext) -> Assignment:
        if not flag.is_active:
            logger.debug("flag is off", key=flag.name)
            return self._assignment(flag.name, AssignmentKind.FLAG, False, AssignmentSource.DEFAULT)

        override = self._overrides.resolve(flag.name, ctx)
        if override is not None:
            return self._assignment(
                flag.name, AssignmentKind.FLAG, override, AssignmentSource.OVERRIDE
            )

        return self._assignment(
            flag.name,
            AssignmentKind.FLAG,
            self._compute_flag(flag, ctx),
            AssignmentSource.COMPUTED,
        )

    def _flag_value(self, flag: FlagDefinition, ctx: UserContext) -> bool:
        if not flag.is_active:
            return False
        override = self._overrides.resolve(flag.name, ctx)
        if override is not None:
            return bool(override)
        return self._compute_flag(flag, ctx)

    def _compute_flag(self, flag: FlagDefinition, ctx: UserContext) -> bool:
        bucket = self._hasher.bucket(ctx.identity, flag.name)
        if not self._rollout.is_enabled(flag, ctx, bucket):
            return False
        # 依存フラグはすべて有効である必要がある（循環は Registry で排除済み）
        return all(
            self._flag_value(self._registry.get_flag(dep), ctx) for dep in flag.dependencies
        )

    def _evaluate_experiment(
        self, experiment: ExperimentDefinition, ctx: UserContext
    ) -> Assignment:
        if not experiment.is_running(self._now()):
            logger.debug("experiment is not running", key=experiment.name)
            return self._control(experiment)

        override = self._overrides.resolve(experiment.name, ctx)
        if override is not None:
            return self._assignment(
                experiment.name, AssignmentKind.EXPERIMENT, override, AssignmentSource.OVERRIDE
            )

        if experiment.segments and not (
            experiment.segments & self._rollout.effective_segments(ctx)
        ):
            return self._control(experiment)

        bucket = self._hasher.bucket(ctx.identity, experiment.name)
        return self._assignment(
            experiment.name,
            AssignmentKind.EXPERIMENT,
            self._selector.select(experiment, bucket),
            AssignmentSource.COMPUTED,
        )

    def _control(self, experiment: ExperimentDefinition) -> Assignment:
        return self._assignment(
            experiment.name,
            AssignmentKind.EXPERIMENT,
            experiment.control,
            AssignmentSource.DEFAULT,
        )

    def _default_for(self, key: str) -> Assignment:
        experiment = self._registry.find_experiment(key)
        if experiment is not None:
            return self._control(experiment)
        return self._assignment(key, AssignmentKind.FLAG, False, AssignmentSource.DEFAULT)

    def _assignment(
        self,
        key: str,
        kind: AssignmentKind,
        value: bool | VariantName,
        source: AssignmentSource,
    ) -> Assignment:
        return Assignment(
            key=key, kind=kind, value=value, source=source, evaluated_at=self._now()
        )
