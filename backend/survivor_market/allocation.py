"""Deterministic split of scarce shares among bids tied at one price.

Ties are split evenly first, then the leftover units go out one at a time in an
order fixed by a seeded shuffle. The seed comes from a string key such as
``"{phase_id}:{contestant_id}:{price}"``, so the same key always replays the
same order and any award can be reproduced after the fact.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Hashable, NamedTuple, Sequence, TypeVar

_MASK32 = 0xFFFFFFFF
_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619

T = TypeVar("T")


class TieRequest(NamedTuple):
    bid_id: Hashable
    requested_shares: int


def hash_string_to_seed(value: str) -> int:
    """32-bit FNV-1a over the key's UTF-16 code units."""
    seed = _FNV_OFFSET
    raw = value.encode("utf-16-le")
    for i in range(0, len(raw), 2):
        seed ^= raw[i] | (raw[i + 1] << 8)
        seed = (seed * _FNV_PRIME) & _MASK32
    return seed


class SeededRandom:
    """Small 32-bit mixing generator. Each instance owns its state."""

    def __init__(self, seed: int):
        self._state = (seed + 0x6D2B79F5) & _MASK32

    def random(self) -> float:
        state = self._state
        state = ((state ^ (state >> 15)) * (state | 1)) & _MASK32
        state ^= (state + (((state ^ (state >> 7)) * (state | 61)) & _MASK32)) & _MASK32
        self._state = state
        return (state ^ (state >> 14)) / 4294967296


def shuffle_deterministic(items: Sequence[T], seed_key: str) -> list[T]:
    result = list(items)
    rng = SeededRandom(hash_string_to_seed(seed_key))
    for i in range(len(result) - 1, 0, -1):
        j = int(rng.random() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def price_key(price) -> str:
    """Render a price the way it appears in a seed key: 2, 2.5, 2.25."""
    return format(Decimal(str(price)).normalize(), "f")


def allocate_tied_shares(
    requests: Sequence[TieRequest],
    available_shares: int,
    seed_key: str,
) -> dict[Hashable, int]:
    awarded: dict[Hashable, int] = {req.bid_id: 0 for req in requests}
    if not requests or available_shares <= 0:
        return awarded

    total_requested = sum(req.requested_shares for req in requests)
    if available_shares >= total_requested:
        for req in requests:
            awarded[req.bid_id] = req.requested_shares
        return awarded

    # Even split, capped per bid. What a small bid leaves unused only feeds the remainder round.
    equal_split = available_shares // len(requests)
    for req in requests:
        awarded[req.bid_id] = min(equal_split, req.requested_shares)

    remainder = available_shares - sum(awarded.values())
    candidates = [req for req in requests if awarded[req.bid_id] < req.requested_shares]
    if remainder <= 0 or not candidates:
        return awarded

    ordered = shuffle_deterministic(candidates, seed_key)
    pointer = 0
    while remainder > 0:
        found = False
        for offset in range(len(ordered)):
            candidate = ordered[(pointer + offset) % len(ordered)]
            if awarded[candidate.bid_id] < candidate.requested_shares:
                awarded[candidate.bid_id] += 1
                pointer = (pointer + offset + 1) % len(ordered)
                remainder -= 1
                found = True
                break
        if not found:
            break

    return awarded
