"""実験バリアントの選択"""

from __future__ import annotations

from collections.abc import Sequence
from itertools import accumulate

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .hasher import BUCKET_COUNT
from .models import ExperimentDefinition, VariantName


def cumulative_boundaries(weights: Sequence[int]) -> list[int]:
    """重みの累積境界を返す。例: [34, 33, 33] -> [34, 67, 100]。"""
    return list(accumulate(weights))


class VariantSelector:
    """重みとバケットからバリアントを選ぶ。"""

    def select(self, experiment: ExperimentDefinition, bucket: int) -> VariantName:
        """バケットに対応するバリアントを返す。

        非アクティブな実験は常にコントロールを返す。重みの合計が 100 で
        なければ正規化せずに FeatureFlagError(INVALID_CONFIG) を送出する。
        """
        if not experiment.active:
            return experiment.control

        boundaries = cumulative_boundaries(experiment.weights)
        if not boundaries or boundaries[-1] != BUCKET_COUNT:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.INVALID_CONFIG,
                message=(
                    f"experiment {experiment.name!r}: weights sum to "
                    f"{boundaries[-1] if boundaries else 0}, not {BUCKET_COUNT}"
                ),
            )
        for variant, boundary in zip(experiment.variants, boundaries):
            if bucket < boundary:
                return variant
        raise ValueError(f"bucket {bucket} is outside [0, {BUCKET_COUNT})")
