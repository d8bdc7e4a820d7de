"""フラグ／実験定義のレジストリ"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from types import MappingProxyType
from typing import TYPE_CHECKING

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .hasher import BUCKET_COUNT
from .models import (
    INTERNAL_SEGMENT,
    AssignmentKind,
    ExperimentDefinition,
    FlagDefinition,
    SegmentId,
)

if TYPE_CHECKING:
    from .config import FeatureFlagConfig


def _invalid(message: str) -> FeatureFlagError:
    return FeatureFlagError(code=FeatureFlagErrorCodes.INVALID_CONFIG, message=message)


class Registry:
    """静的なフラグ／実験定義を保持する読み取り専用レジストリ。

    生成時にすべての不変条件を検証し、不正な定義があれば
    FeatureFlagError(INVALID_CONFIG) を送出する。実行時の変更や
    再読み込みはできない。
    """

    def __init__(
        self,
        flags: Iterable[FlagDefinition] = (),
        experiments: Iterable[ExperimentDefinition] = (),
        internal_segment: SegmentId = INTERNAL_SEGMENT,
        internal_domains: Iterable[str] = (),
    ) -> None:
        flag_map: dict[str, FlagDefinition] = {}
        experiment_map: dict[str, ExperimentDefinition] = {}

        for flag in flags:
            self._check_name(flag.name, flag_map, experiment_map)
            flag_map[flag.name] = flag
        for experiment in experiments:
            self._check_name(experiment.name, flag_map, experiment_map)
            _validate_experiment(experiment)
            experiment_map[experiment.name] = experiment
        _validate_dependencies(flag_map, experiment_map)

        self._flags = MappingProxyType(flag_map)
        self._experiments = MappingProxyType(experiment_map)
        self._internal_segment = internal_segment
        self._internal_domains = tuple(internal_domains)

    @classmethod
    def from_config(cls, config: FeatureFlagConfig) -> Registry:
        """検証済み設定からレジストリを構築する。"""
        return cls(
            flags=[f.to_definition() for f in config.flags],
            experiments=[e.to_definition() for e in config.experiments],
            internal_segment=config.internal_segment,
            internal_domains=config.internal_domains,
        )

    @staticmethod
    def _check_name(
        name: str,
        flags: dict[str, FlagDefinition],
        experiments: dict[str, ExperimentDefinition],
    ) -> None:
        if not name:
            raise _invalid("definition name cannot be empty")
        if name in flags or name in experiments:
            raise _invalid(f"duplicate key: {name!r}")

    @property
    def internal_segment(self) -> SegmentId:
        return self._internal_segment

    @property
    def internal_domains(self) -> tuple[str, ...]:
        return self._internal_domains

    @property
    def flags(self) -> tuple[FlagDefinition, ...]:
        return tuple(self._flags.values())

    @property
    def experiments(self) -> tuple[ExperimentDefinition, ...]:
        return tuple(self._experiments.values())

    def keys(self) -> list[str]:
        """フラグ、実験の順に定義順でキーを返す。"""
        return [*self._flags, *self._experiments]

    def kind_of(self, key: str) -> AssignmentKind | None:
        if key in self._flags:
            return AssignmentKind.FLAG
        if key in self._experiments:
            return AssignmentKind.EXPERIMENT
        return None

    def find_flag(self, key: str) -> FlagDefinition | None:
        return self._flags.get(key)

    def find_experiment(self, key: str) -> ExperimentDefinition | None:
        return self._experiments.get(key)

    def get_flag(self, key: str) -> FlagDefinition:
        flag = self._flags.get(key)
        if flag is None:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.FLAG_NOT_FOUND,
                f"フラグが見つかりません: {key}",
            )
        return flag

    def get_experiment(self, key: str) -> ExperimentDefinition:
        experiment = self._experiments.get(key)
        if experiment is None:
            raise FeatureFlagError(
                FeatureFlagErrorCodes.FLAG_NOT_FOUND,
                f"実験が見つかりません: {key}",
            )
        return experiment

    def __contains__(self, key: object) -> bool:
        return key in self._flags or key in self._experiments

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._flags) + len(self._experiments)


def _validate_experiment(experiment: ExperimentDefinition) -> None:
    name = experiment.name
    if len(experiment.variants) < 2:
        raise _invalid(f"experiment {name!r}: at least 2 variants are required")
    if len(experiment.variants) != len(experiment.weights):
        raise _invalid(
            f"experiment {name!r}: variant count ({len(experiment.variants)}) "
            f"doesn't match weight count ({len(experiment.weights)})"
        )
    if len(set(experiment.variants)) != len(experiment.variants):
        raise _invalid(f"experiment {name!r}: duplicate variant names")
    if any(w < 0 for w in experiment.weights):
        raise _invalid(f"experiment {name!r}: weights must be non-negative")
    total = sum(experiment.weights)
    if total != BUCKET_COUNT:
        raise _invalid(f"experiment {name!r}: weights sum to {total}, not {BUCKET_COUNT}")
    if (
        experiment.start_at is not None
        and experiment.end_at is not None
        and experiment.end_at < experiment.start_at
    ):
        raise _invalid(f"experiment {name!r}: end_at is before start_at")


def _validate_dependencies(
    flags: dict[str, FlagDefinition],
    experiments: dict[str, ExperimentDefinition],
) -> None:
    for flag in flags.values():
        for dep in flag.dependencies:
            if dep in experiments:
                raise _invalid(f"flag {flag.name!r}: dependency {dep!r} is an experiment")
            if dep not in flags:
                raise _invalid(f"flag {flag.name!r}: unknown dependency {dep!r}")

    visiting: set[str] = set()
    done: set[str] = set()

    def visit(name: str, path: list[str]) -> None:
        if name in done:
            return
        if name in visiting:
            cycle = " -> ".join([*path[path.index(name) :], name])
            raise _invalid(f"dependency cycle: {cycle}")
        visiting.add(name)
        for dep in flags[name].dependencies:
            visit(dep, [*path, name])
        visiting.discard(name)
        done.add(name)

    for name in flags:
        visit(name, [])
