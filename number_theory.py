"""Bounded number-theoretic helpers shared by Paillier and the ballot proofs.

素数搜索交给 phe.util.getprimeover，这里只保留互素采样与 lcm。
"""

from __future__ import annotations

import math
import secrets

from constants import COPRIME_SEARCH_ATTEMPTS
from errors import CryptoFailureError


def random_coprime(n: int, max_attempts: int = COPRIME_SEARCH_ATTEMPTS) -> int:
    """随机选取与n互素的r / Uniform r in [1, n) with gcd(r, n) == 1."""
    if n < 3:
        raise ValueError("Modulus too small for a coprime search")
    for _ in range(max_attempts):
        r = 1 + secrets.randbelow(n - 1)
        if math.gcd(r, n) == 1:
            return r
    raise CryptoFailureError(f"Coprimality search exhausted after {max_attempts} attempts")


def lcm(a: int, b: int) -> int:
    return a // math.gcd(a, b) * b
