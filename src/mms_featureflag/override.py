"""明示的オーバーライドの解決"""

from __future__ import annotations

from collections.abc import Mapping

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .models import AssignmentKind, OverrideValue, UserContext
from .registry import Registry


class OverrideResolver:
    """UserContext.overrides に含まれる QA／デバッグ用の値を解決する。

    オーバーライドは計算結果より常に優先される。値の形が不正な場合は
    「オーバーライドなし」と区別できるよう FeatureFlagError(INVALID_OVERRIDE)
    を送出する。
    """

    def __init__(self, registry: Registry) -> None:
        self._registry = registry

    def resolve(self, key: str, ctx: UserContext) -> OverrideValue | None:
        """key に対するオーバーライド値を返す。存在しなければ None。"""
        if key not in ctx.overrides:
            return None
        value = ctx.overrides[key]

        kind = self._registry.kind_of(key)
        if kind == AssignmentKind.FLAG and not isinstance(value, bool):
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.INVALID_OVERRIDE,
                message=f"override for flag {key!r} must be a bool, got {value!r}",
            )
        if kind == AssignmentKind.EXPERIMENT:
            experiment = self._registry.get_experiment(key)
            if not isinstance(value, str) or value not in experiment.variants:
                raise FeatureFlagError(
                    code=FeatureFlagErrorCodes.INVALID_OVERRIDE,
                    message=(
                        f"override for experiment {key!r} must be one of "
                        f"{list(experiment.variants)}, got {value!r}"
                    ),
                )
        return value


def _parse_value(raw: str) -> OverrideValue:
    lowered = raw.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return raw.strip()


def parse_overrides(raw: str) -> dict[str, OverrideValue]:
    """デバッグ用クエリ文字列の値をオーバーライドマップに変換する。

    形式は ``key:value,key2:value2``。``true`` / ``false`` は bool になる。
    例: ``"beta_checkout:true,hero_style:animated"``
    """
    overrides: dict[str, OverrideValue] = {}
    for item in raw.split(","):
        if not item.strip():
            continue
        key, sep, value = item.partition(":")
        if not sep or not key.strip() or not value.strip():
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.INVALID_OVERRIDE,
                message=f"malformed override entry: {item!r}",
            )
        overrides[key.strip()] = _parse_value(value)
    return overrides


def overrides_from_env(
    environ: Mapping[str, str], prefix: str = "MMS_FF_"
) -> dict[str, OverrideValue]:
    """環境変数形式のマッピングからオーバーライドマップを作る。

    ``MMS_FF_BETA_CHECKOUT=true`` は ``{"beta_checkout": True}`` になる。
    呼び出し側が os.environ などを渡す。
    """
    return {
        name[len(prefix) :].lower(): _parse_value(value)
        for name, value in environ.items()
        if name.startswith(prefix) and len(name) > len(prefix) and value.strip()
    }
