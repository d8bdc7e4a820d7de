"""決定的バケット計算"""

from __future__ import annotations

from typing import Protocol

BUCKET_COUNT = 100

_MASK = 0xFFFFFFFF
_C1 = 0xCC9E2D51
_C2 = 0x1B873593


def _rotl32(x: int, r: int) -> int:
    return ((x << r) | (x >> (32 - r))) & _MASK


def _fmix32(h: int) -> int:
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK
    h ^= h >> 16
    return h


def murmur3_32(data: bytes, seed: int = 0) -> int:
    """MurmurHash3 (x86, 32bit) を計算する。

    Args:
        data: 入力バイト列
        seed: シード値

    Returns:
        符号なし 32bit ハッシュ値
    """
    h = seed & _MASK
    length = len(data)
    block_end = length - (length % 4)

    for i in range(0, block_end, 4):
        k = int.from_bytes(data[i : i + 4], "little")
        k = (k * _C1) & _MASK
        k = _rotl32(k, 15)
        k = (k * _C2) & _MASK
        h ^= k
        h = _rotl32(h, 13)
        h = (h * 5 + 0xE6546B64) & _MASK

    tail = data[block_end:]
    k = 0
    if len(tail) >= 3:
        k ^= tail[2] << 16
    if len(tail) >= 2:
        k ^= tail[1] << 8
    if len(tail) >= 1:
        k ^= tail[0]
        k = (k * _C1) & _MASK
        k = _rotl32(k, 15)
        k = (k * _C2) & _MASK
        h ^= k

    h ^= length
    return _fmix32(h)


class Hasher(Protocol):
    """(identity, namespace) を [0, 100) のバケットに写像するプロトコル。"""

    def bucket(self, identity: str, namespace: str) -> int: ...


class MurmurHasher:
    """MurmurHash3 ベースのハッシャー。

    入力は ``identity + ":" + namespace``。namespace を含めることで
    同じユーザーでもフラグ／実験ごとに独立したバケットになる。
    """

    def __init__(self, seed: int = 0) -> None:
        self._seed = seed

    def bucket(self, identity: str, namespace: str) -> int:
        # 孤立サロゲートを含む識別子も例外にせずバイト列にする
        key = f"{identity}:{namespace}".encode("utf-8", "surrogatepass")
        return murmur3_32(key, self._seed) % BUCKET_COUNT
