"""Registry のユニットテスト"""

from datetime import UTC, datetime

import pytest
from helpers import FixedBucketHasher, make_ctx, make_experiment, make_flag
from mms_featureflag import (
    AssignmentEngine,
    AssignmentKind,
    FeatureFlagConfig,
    FeatureFlagError,
    FeatureFlagErrorCodes,
    Registry,
    RolloutStage,
)


def test_lookup() -> None:
    """フラグと実験を名前で引けること。"""
    registry = Registry(
        flags=[make_flag("beta_checkout", RolloutStage.BETA)],
        experiments=[make_experiment()],
    )
    assert registry.get_flag("beta_checkout").rollout_stage == RolloutStage.BETA
    assert registry.get_experiment("hero_style").control == "control"
    assert registry.kind_of("beta_checkout") == AssignmentKind.FLAG
    assert registry.kind_of("hero_style") == AssignmentKind.EXPERIMENT
    assert registry.kind_of("missing") is None
    assert registry.keys() == ["beta_checkout", "hero_style"]
    assert "hero_style" in registry
    assert len(registry) == 2


def test_get_missing_raises_not_found() -> None:
    """存在しないキーの厳密取得は FLAG_NOT_FOUND。"""
    registry = Registry()
    with pytest.raises(FeatureFlagError) as exc_info:
        registry.get_flag("nope")
    assert exc_info.value.code == FeatureFlagErrorCodes.FLAG_NOT_FOUND
    assert registry.find_flag("nope") is None
    assert registry.find_experiment("nope") is None


@pytest.mark.parametrize(
    "build",
    [
        pytest.param(
            lambda: Registry(
                flags=[make_flag("dup", RolloutStage.FULL), make_flag("dup", RolloutStage.OFF)]
            ),
            id="duplicate-flag",
        ),
        pytest.param(
            lambda: Registry(
                flags=[make_flag("dup", RolloutStage.FULL)],
                experiments=[make_experiment(name="dup")],
            ),
            id="flag-experiment-collision",
        ),
        pytest.param(lambda: Registry(flags=[make_flag("", RolloutStage.FULL)]), id="empty-name"),
        pytest.param(
            lambda: Registry(experiments=[make_experiment(variants=("only",), weights=(100,))]),
            id="single-variant",
        ),
        pytest.param(
            lambda: Registry(experiments=[make_experiment(weights=(50, 50))]),
            id="length-mismatch",
        ),
        pytest.param(
            lambda: Registry(experiments=[make_experiment(weights=(40, 30, 20))]),
            id="weights-sum",
        ),
        pytest.param(
            lambda: Registry(experiments=[make_experiment(weights=(110, -5, -5))]),
            id="negative-weight",
        ),
        pytest.param(
            lambda: Registry(
                experiments=[make_experiment(variants=("a", "a"), weights=(50, 50))]
            ),
            id="duplicate-variant",
        ),
        pytest.param(
            lambda: Registry(
                experiments=[
                    make_experiment(
                        start_at=datetime(2026, 2, 1, tzinfo=UTC),
                        end_at=datetime(2026, 1, 1, tzinfo=UTC),
                    )
                ]
            ),
            id="inverted-schedule",
        ),
        pytest.param(
            lambda: Registry(
                flags=[make_flag("a", RolloutStage.FULL, dependencies=("missing",))]
            ),
            id="unknown-dependency",
        ),
        pytest.param(
            lambda: Registry(
                flags=[make_flag("a", RolloutStage.FULL, dependencies=("hero_style",))],
                experiments=[make_experiment()],
            ),
            id="experiment-dependency",
        ),
        pytest.param(
            lambda: Registry(
                flags=[
                    make_flag("a", RolloutStage.FULL, dependencies=("b",)),
                    make_flag("b", RolloutStage.FULL, dependencies=("c",)),
                    make_flag("c", RolloutStage.FULL, dependencies=("a",)),
                ]
            ),
            id="dependency-cycle",
        ),
    ],
)
def test_invalid_configuration_is_fatal(build) -> None:  # type: ignore[no-untyped-def]
    """不正な定義は生成時に INVALID_CONFIG で拒否されること。"""
    with pytest.raises(FeatureFlagError) as exc_info:
        build()
    assert exc_info.value.code == FeatureFlagErrorCodes.INVALID_CONFIG


def test_dependency_cycle_message_names_path() -> None:
    """循環のエラーメッセージに経路が含まれること。"""
    with pytest.raises(FeatureFlagError, match="a -> b -> a"):
        Registry(
            flags=[
                make_flag("a", RolloutStage.FULL, dependencies=("b",)),
                make_flag("b", RolloutStage.FULL, dependencies=("a",)),
            ]
        )


def test_from_config() -> None:
    """設定モデルからレジストリを構築できること。"""
    config = FeatureFlagConfig.model_validate(
        {
            "internal_domains": ["@internal.test"],
            "flags": [
                {"name": "v7_ui", "rollout_stage": "gradual25", "segments": ["beta_testers"]},
                {"name": "v7_hero", "rollout_stage": "gradual50", "dependencies": ["v7_ui"]},
            ],
            "experiments": [
                {
                    "name": "hero_style",
                    "variants": ["control", "animated", "cinematic"],
                    "weights": [34, 33, 33],
                    "start_at": "2026-01-01T00:00:00",
                }
            ],
        }
    )
    registry = Registry.from_config(config)
    assert registry.internal_domains == ("@internal.test",)
    assert registry.get_flag("v7_ui").segments == frozenset({"beta_testers"})
    assert registry.get_flag("v7_hero").dependencies == ("v7_ui",)
    experiment = registry.get_experiment("hero_style")
    assert experiment.variants == ("control", "animated", "cinematic")
    assert experiment.start_at == datetime(2026, 1, 1, tzinfo=UTC)


def test_definitions_are_immutable() -> None:
    """定義は読み込み後に変更できないこと。"""
    flag = make_flag("f", RolloutStage.BETA)
    with pytest.raises(AttributeError):
        flag.rollout_stage = RolloutStage.FULL  # type: ignore[misc]


def test_naive_schedule_is_treated_as_utc() -> None:
    """タイムゾーンなしの実施期間は UTC とみなして評価できること。"""
    experiment = make_experiment(start_at=datetime(2020, 1, 1), end_at=datetime(2099, 1, 1))
    assert experiment.start_at == datetime(2020, 1, 1, tzinfo=UTC)
    assert experiment.end_at == datetime(2099, 1, 1, tzinfo=UTC)

    registry = Registry(experiments=[experiment])
    engine = AssignmentEngine(registry, hasher=FixedBucketHasher({"user-1": 50}))
    assignment = engine.safe_evaluate("hero_style", make_ctx())
    assert assignment.value == "animated"
    assert engine.list_active_assignments(make_ctx())[0].value == "animated"
