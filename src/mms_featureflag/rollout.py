"""ロールアウト段階の判定"""

from __future__ import annotations

from collections.abc import Iterable

from .models import INTERNAL_SEGMENT, FlagDefinition, RolloutStage, SegmentId, UserContext


class RolloutPolicy:
    """フラグのロールアウト段階とセグメントから有効／無効を決める。

    段階は internal → beta(10%) → 25% → 50% → 100% の単調なはしご。
    バケットは identity ごとに固定なので、段階を上げても有効な利用者は
    減らない。
    """

    def __init__(
        self,
        internal_segment: SegmentId = INTERNAL_SEGMENT,
        internal_domains: Iterable[str] = (),
    ) -> None:
        self._internal_segment = internal_segment
        self._internal_domains = tuple(d.lower() for d in internal_domains)

    @property
    def internal_segment(self) -> SegmentId:
        return self._internal_segment

    def effective_segments(self, ctx: UserContext) -> frozenset[SegmentId]:
        """コンテキストのセグメントに、メールドメイン由来の内部セグメントを加えて返す。"""
        if ctx.email and self._internal_domains:
            email = ctx.email.lower()
            if any(email.endswith(domain) for domain in self._internal_domains):
                return ctx.segments | {self._internal_segment}
        return ctx.segments

    def is_enabled(self, flag: FlagDefinition, ctx: UserContext, bucket: int) -> bool:
        """フラグが有効かを判定する。

        Args:
            flag: フラグ定義
            ctx: 評価コンテキスト
            bucket: identity と flag.name から計算した [0, 100) のバケット

        Returns:
            有効なら True
        """
        stage = flag.rollout_stage
        if stage == RolloutStage.OFF:
            return False
        if stage == RolloutStage.FULL:
            return True

        identity = ctx.identity
        if identity in flag.blocklist:
            return False
        if identity in flag.allowlist:
            return True

        segments = self.effective_segments(ctx)
        # internal はトラフィック割合ではなくセグメントで判定する
        if stage == RolloutStage.INTERNAL:
            return self._internal_segment in segments
        if flag.segments & segments:
            return True
        return bucket < stage.percentage
