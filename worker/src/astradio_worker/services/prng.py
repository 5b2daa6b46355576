"""Seeded xorshift32 streams and string hashing helpers."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Callable

_MASK = 0xFFFFFFFF
_ZERO_SEED_DEFAULT = 0x9E3779B9


def _derive_state(seed: str) -> int:
    state = 0
    for char in seed:
        state = (state ^ ord(char)) & _MASK
        state = ((state ^ (state >> 15)) * 2246822507) & _MASK
        state = ((state ^ (state >> 13)) * 3266489909) & _MASK
    return state or _ZERO_SEED_DEFAULT


def create_seeded_rng(seed: str) -> Callable[[], float]:
    """Return a generator of floats in [0, 1) that depends only on ``seed``."""

    state = _derive_state(seed)

    def _next() -> float:
        nonlocal state
        state ^= (state << 13) & _MASK
        state ^= state >> 17
        state ^= (state << 5) & _MASK
        state &= _MASK
        return state / 4294967296.0

    return _next


def string_hash(text: str) -> int:
    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & _MASK
    if value & 0x80000000:
        value -= 0x100000000
    return abs(value)


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def prefixed_digest(text: str) -> str:
    return f"sha256:{sha256_hex(text)}"
