"""設定ローダーのユニットテスト"""

from pathlib import Path

import pytest
import structlog
from mms_featureflag import FeatureFlagError, FeatureFlagErrorCodes, RolloutStage
from mms_featureflag.loader import configure_logging, deep_merge, load, load_registry

BASE_CONFIG = """\
internal_domains:
  - "@mandalay-morning-star.com"
flags:
  - name: beta_checkout
    rollout_stage: beta
    description: New checkout wizard
  - name: v7_admin
    rollout_stage: internal
experiments:
  - name: hero_style
    variants: [control, animated, cinematic]
    weights: [34, 33, 33]
    min_sample_size: 1000
telemetry:
  endpoint: http://analytics:8080/events
  retry:
    max_attempts: 4
"""


def write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config(tmp_path: Path) -> None:
    """YAML 設定を読み込めること。"""
    config = load(write(tmp_path / "flags.yaml", BASE_CONFIG))
    assert config.flags[0].name == "beta_checkout"
    assert config.flags[0].rollout_stage == RolloutStage.BETA
    assert config.experiments[0].min_sample_size == 1000
    assert config.telemetry.retry.max_attempts == 4
    assert config.telemetry.to_emitter_config().retry.max_attempts == 4
    assert config.telemetry.to_sink_config().endpoint == "http://analytics:8080/events"
    assert config.log.format == "json"


def test_load_with_env_override(tmp_path: Path) -> None:
    """環境別設定がマージされること（リストは置換）。"""
    base = write(tmp_path / "base.yaml", BASE_CONFIG)
    env = write(
        tmp_path / "prod.yaml",
        "flags:\n  - name: beta_checkout\n    rollout_stage: gradual50\n"
        "telemetry:\n  queue_size: 10\n",
    )
    config = load(base, env)
    assert [f.name for f in config.flags] == ["beta_checkout"]
    assert config.flags[0].rollout_stage == RolloutStage.GRADUAL_50
    assert config.telemetry.queue_size == 10
    assert config.telemetry.retry.max_attempts == 4


def test_load_env_not_exists(tmp_path: Path) -> None:
    """env_path が存在しない場合は base のみ使用。"""
    config = load(write(tmp_path / "base.yaml", BASE_CONFIG), tmp_path / "missing.yaml")
    assert len(config.flags) == 2


def test_load_file_not_found(tmp_path: Path) -> None:
    """存在しないファイルで READ_FILE_ERROR。"""
    with pytest.raises(FeatureFlagError) as exc_info:
        load(tmp_path / "missing.yaml")
    assert exc_info.value.code == FeatureFlagErrorCodes.READ_FILE


def test_load_invalid_yaml(tmp_path: Path) -> None:
    """不正 YAML で PARSE_YAML_ERROR。"""
    with pytest.raises(FeatureFlagError) as exc_info:
        load(write(tmp_path / "bad.yaml", "flags: [unclosed\n"))
    assert exc_info.value.code == FeatureFlagErrorCodes.PARSE_YAML


def test_load_non_mapping_root(tmp_path: Path) -> None:
    """ルートがマッピングでなければ PARSE_YAML_ERROR。"""
    with pytest.raises(FeatureFlagError) as exc_info:
        load(write(tmp_path / "list.yaml", "- a\n- b\n"))
    assert exc_info.value.code == FeatureFlagErrorCodes.PARSE_YAML


def test_load_validation_error(tmp_path: Path) -> None:
    """未知のロールアウト段階で VALIDATION_ERROR。"""
    bad = write(tmp_path / "bad.yaml", "flags:\n  - name: x\n    rollout_stage: gradual75\n")
    with pytest.raises(FeatureFlagError) as exc_info:
        load(bad)
    assert exc_info.value.code == FeatureFlagErrorCodes.VALIDATION


def test_load_registry(tmp_path: Path) -> None:
    """設定ファイルから Registry を構築できること。"""
    registry = load_registry(write(tmp_path / "flags.yaml", BASE_CONFIG))
    assert registry.keys() == ["beta_checkout", "v7_admin", "hero_style"]
    assert registry.internal_domains == ("@mandalay-morning-star.com",)


def test_load_registry_rejects_bad_weights(tmp_path: Path) -> None:
    """重みの合計が 100 でない設定は読み込み時に拒否されること。"""
    bad = write(
        tmp_path / "bad.yaml",
        "experiments:\n  - name: e\n    variants: [a, b]\n    weights: [50, 40]\n",
    )
    with pytest.raises(FeatureFlagError) as exc_info:
        load_registry(bad)
    assert exc_info.value.code == FeatureFlagErrorCodes.INVALID_CONFIG


def test_deep_merge() -> None:
    """ネストした辞書はマージし、それ以外は置換すること。"""
    base = {"a": {"b": 1, "c": 2}, "l": [1, 2]}
    merged = deep_merge(base, {"a": {"c": 3}, "l": [9]})
    assert merged == {"a": {"b": 1, "c": 3}, "l": [9]}
    assert base["a"] == {"b": 1, "c": 2}


def test_configure_logging_from_config(tmp_path: Path) -> None:
    """log セクションの形式が structlog の設定に反映されること。"""
    config = load(write(tmp_path / "flags.yaml", "log:\n  level: DEBUG\n  format: text\n"))
    logger = configure_logging(config, cache_logger_on_first_use=False)
    assert logger is not None
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


def test_configure_logging_defaults_to_json(tmp_path: Path) -> None:
    """log セクション省略時は JSON 形式。"""
    config = load(write(tmp_path / "flags.yaml", "flags: []\n"))
    configure_logging(config, cache_logger_on_first_use=False)
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)
