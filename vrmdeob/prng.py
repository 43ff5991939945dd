"""xorshift128 generator used to build the meta texture and lookup coordinates.

State words are kept as unsigned 32-bit values; ``w`` is reinterpreted as
signed when producing output.
"""

from __future__ import annotations

MASK32 = 0xFFFFFFFF

DEFAULT_SEED = 0x5491333
_X0 = 0x75BCD15
_Y0 = 0x159A55E5
_Z0 = 0x1F123BB5


def _signed32(v: int) -> int:
    return v - 0x100000000 if v & 0x80000000 else v


class RandomGenerator:
    def __init__(self, seed: int = DEFAULT_SEED):
        self._x = _X0
        self._y = _Y0
        self._z = _Z0
        self._w = seed & MASK32

    def _next(self) -> int:
        x = self._x
        t = (x ^ (x << 11)) & MASK32
        self._x = self._y
        self._y = self._z
        self._z = self._w
        w = self._w
        self._w = (w ^ (w >> 19) ^ (t ^ (t >> 8))) & MASK32
        return _signed32(self._w)

    def next(self) -> float:
        """abs(w) / 2**31; equals 1.0 only when w == -2**31."""
        return abs(self._next()) / 0x80000000

    def next_in_range(self, n: int) -> int:
        return int(n * self.next()) % n

    def replace_x(self, x: int) -> None:
        self._x = x & MASK32
