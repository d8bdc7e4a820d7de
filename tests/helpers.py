"""テスト共通ヘルパー"""

from mms_featureflag import (
    ExperimentDefinition,
    FlagDefinition,
    RolloutStage,
    UserContext,
)


class FixedBucketHasher:
    """identity ごとに固定バケットを返すテスト用ハッシャー。"""

    def __init__(self, buckets: dict[str, int], default: int = 99) -> None:
        self.buckets = buckets
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def bucket(self, identity: str, namespace: str) -> int:
        self.calls.append((identity, namespace))
        return self.buckets.get(identity, self.default)


def make_flag(
    name: str,
    stage: RolloutStage,
    segments: frozenset[str] = frozenset(),
    **kwargs: object,
) -> FlagDefinition:
    return FlagDefinition(
        name=name, rollout_stage=stage, segments=segments, **kwargs  # type: ignore[arg-type]
    )


def make_experiment(
    name: str = "hero_style",
    variants: tuple[str, ...] = ("control", "animated", "cinematic"),
    weights: tuple[int, ...] = (34, 33, 33),
    **kwargs: object,
) -> ExperimentDefinition:
    return ExperimentDefinition(
        name=name, variants=variants, weights=weights, **kwargs  # type: ignore[arg-type]
    )


def make_ctx(
    user_id: str | None = "user-1",
    session_id: str = "session-1",
    **kwargs: object,
) -> UserContext:
    return UserContext(session_id=session_id, user_id=user_id, **kwargs)  # type: ignore[arg-type]
