"""設定ファイル読み込み"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from .config import FeatureFlagConfig
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .logger import new_logger
from .registry import Registry


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base に override を再帰的に重ねた新しい辞書を返す。リストは置換する。"""
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.PARSE_YAML,
            message=f"Config root must be a mapping: {path}",
        )
    return data


def load(base_path: Path, env_path: Path | None = None) -> FeatureFlagConfig:
    """設定ファイルを読み込んで FeatureFlagConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    try:
        return FeatureFlagConfig.model_validate(data)
    except ValidationError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.VALIDATION,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e


def load_registry(base_path: Path, env_path: Path | None = None) -> Registry:
    """設定ファイルを読み込み、検証済みの Registry を返す。

    不正な定義があれば FeatureFlagError を送出し、起動を中止させる。
    """
    return Registry.from_config(load(base_path, env_path))


def configure_logging(
    config: FeatureFlagConfig, cache_logger_on_first_use: bool = True
) -> structlog.stdlib.BoundLogger:
    """設定の log セクションに従って structlog を構成する。"""
    return new_logger(
        level=config.log.level,
        format=config.log.format,
        cache_logger_on_first_use=cache_logger_on_first_use,
    )
