"""Threshold Paillier decryption via Shamir sharing over the integers.

共享的秘密是由 lambda 导出的解密指数 d = lambda * mu (d ≡ 0 mod lambda,
d ≡ 1 mod n)，多项式在模 n*lambda 下求值。合并时在指数上做拉格朗日插值，
系数统一乘以 Δ = share_count! 使其为整数，无需知道群的阶。
"""

from __future__ import annotations

import logging
import math
import secrets
from dataclasses import dataclass
from typing import Dict, List, Sequence

from data_models import KeyShare, PartialDecryption
from errors import ThresholdInsufficientError, ValidationError
from paillier import L, PaillierPrivateKey, PaillierPublicKey, check_ciphertext

logger = logging.getLogger(__name__)


def generate_key_shares(private_key: PaillierPrivateKey, share_count: int, t: int) -> List[KeyShare]:
    """拆分解密指数 / Split the lambda-derived exponent into ``share_count`` shares."""
    if not 1 <= t <= share_count:
        raise ValidationError(f"Threshold t={t} must satisfy 1 <= t <= {share_count}")
    n = private_key.n
    if math.gcd(math.factorial(share_count), n) != 1:
        raise ValidationError("share_count! shares a factor with n; modulus too small")

    modulus = n * private_key.lam
    secret = (private_key.lam * private_key.mu) % modulus
    coefficients = [secret] + [secrets.randbelow(modulus) for _ in range(t - 1)]

    shares = []
    for i in range(1, share_count + 1):
        # Horner evaluation of f(i) mod n*lambda
        value = 0
        for coeff in reversed(coefficients):
            value = (value * i + coeff) % modulus
        shares.append(KeyShare(index=i, value=value, n=n, t=t, share_count=share_count))
    logger.info("Split decryption key into %d shares (threshold %d)", share_count, t)
    return shares


def create_partial_decryption(ciphertext: int, share: KeyShare) -> int:
    public_key = PaillierPublicKey(share.n)
    check_ciphertext(ciphertext, public_key)
    return pow(ciphertext, share.value, public_key.n_squared)


def partial_decrypt_all(authority_id: str, ciphertexts: Sequence[int], share: KeyShare) -> PartialDecryption:
    """对聚合密文逐一部分解密 / Partial decryption of every tally ciphertext."""
    return PartialDecryption(
        authority_id=authority_id,
        share_index=share.index,
        values=[create_partial_decryption(c, share) for c in ciphertexts],
        n=share.n,
    )


def lagrange_coefficients(indices: Sequence[int], share_count: int) -> Dict[int, int]:
    """Δ-scaled Lagrange coefficients at x = 0, all integers."""
    delta = math.factorial(share_count)
    coefficients: Dict[int, int] = {}
    for i in indices:
        numerator = delta
        denominator = 1
        for j in indices:
            if i != j:
                numerator *= j
                denominator *= j - i
        # Δ * prod j/(j-i) is always integral for indices within 1..share_count
        coefficients[i] = numerator // denominator
    return coefficients


def _select_shares(items: Sequence, t: int, key) -> List:
    distinct: Dict[int, object] = {}
    for item in items:
        distinct.setdefault(key(item), item)
    if len(distinct) < t:
        raise ThresholdInsufficientError(f"Need at least {t} distinct shares, got {len(distinct)}")
    return [distinct[idx] for idx in sorted(distinct)[:t]]


def combine_partial_decryptions(
    partials: Dict[int, int],
    public_key: PaillierPublicKey,
    t: int,
    share_count: int,
) -> int:
    """合并部分解密 / Combine ``{share_index: c^share}`` into the plaintext."""
    if len(partials) < t:
        raise ThresholdInsufficientError(f"Need at least {t} partial decryptions, got {len(partials)}")
    indices = sorted(partials)[:t]
    if any(not 1 <= idx <= share_count for idx in indices):
        raise ValidationError("Partial decryption carries an unknown share index")

    n, n_sq = public_key.n, public_key.n_squared
    combined = 1
    for idx, coeff in lagrange_coefficients(indices, share_count).items():
        # negative exponents use the modular inverse
        combined = (combined * pow(partials[idx], coeff, n_sq)) % n_sq

    delta = math.factorial(share_count)
    return (L(combined, n) * pow(delta, -1, n)) % n


@dataclass(frozen=True)
class ThresholdDecryptionKey:
    """由 t 个份额重建的解密钥 / Working key rebuilt from at least t shares."""

    public_key: PaillierPublicKey
    exponent: int
    delta: int

    def decrypt(self, ciphertext: int) -> int:
        check_ciphertext(ciphertext, self.public_key)
        n, n_sq = self.public_key.n, self.public_key.n_squared
        return (L(pow(ciphertext, self.exponent, n_sq), n) * pow(self.delta, -1, n)) % n


def combine_key_shares(shares: Sequence[KeyShare]) -> ThresholdDecryptionKey:
    if not shares:
        raise ThresholdInsufficientError("No key shares supplied")
    first = shares[0]
    if any((s.n, s.t, s.share_count) != (first.n, first.t, first.share_count) for s in shares):
        raise ValidationError("Key shares belong to different sharings")
    selected = _select_shares(shares, first.t, key=lambda s: s.index)
    coefficients = lagrange_coefficients([s.index for s in selected], first.share_count)
    exponent = sum(coefficients[s.index] * s.value for s in selected)
    return ThresholdDecryptionKey(
        public_key=PaillierPublicKey(first.n),
        exponent=exponent,
        delta=math.factorial(first.share_count),
    )
