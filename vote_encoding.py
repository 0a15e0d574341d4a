"""Vote encodings for homomorphic tallying.

Two layouts are supported:

* indicator vectors: one ciphertext per candidate holding 0 or 1;
* packed positional encoding: a single plaintext where every candidate owns a
  disjoint block of decimal digits wide enough for ``max_votes``.
"""

from __future__ import annotations

from typing import List

from errors import ValidationError


def candidate_indicator_vector(candidate_index: int, total_candidates: int) -> List[int]:
    _check_candidate(candidate_index, total_candidates)
    return [1 if i == candidate_index else 0 for i in range(total_candidates)]


def digit_width(max_votes: int) -> int:
    """每位候选人占用的十进制位数 / Digits needed to hold ``max_votes``."""
    if max_votes < 1:
        raise ValidationError("max_votes must be positive")
    return len(str(max_votes))


def block_base(max_votes: int) -> int:
    return 10 ** digit_width(max_votes)


def encode_vote(candidate_index: int, total_candidates: int, max_votes: int) -> int:
    """base^candidate_index, base = 10^digit_width(max_votes)."""
    _check_candidate(candidate_index, total_candidates)
    return block_base(max_votes) ** candidate_index


def decode_tally(total: int, total_candidates: int, max_votes: int) -> List[int]:
    if total < 0:
        raise ValidationError("Tally must be non-negative")
    base = block_base(max_votes)
    counts = []
    for _ in range(total_candidates):
        total, count = divmod(total, base)
        counts.append(count)
    if total:
        raise ValidationError("Tally exceeds the encoding capacity; digit blocks overflowed")
    return counts


def packed_capacity(total_candidates: int, max_votes: int) -> int:
    """Largest plaintext a full tally can reach, exclusive."""
    return block_base(max_votes) ** total_candidates


def ensure_capacity(total_candidates: int, max_votes: int, n: int) -> None:
    if packed_capacity(total_candidates, max_votes) > n:
        raise ValidationError(
            f"{total_candidates} candidates x {digit_width(max_votes)} digits do not fit under the Paillier modulus"
        )


def _check_candidate(candidate_index: int, total_candidates: int) -> None:
    if total_candidates < 1:
        raise ValidationError("total_candidates must be positive")
    if not 0 <= candidate_index < total_candidates:
        raise ValidationError(f"Invalid candidate {candidate_index}; must be within 0..{total_candidates - 1}")
