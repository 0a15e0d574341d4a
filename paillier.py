"""Paillier additively homomorphic encryption.

公钥 (n, g = n + 1)，私钥 (lambda, mu)。单张选票从不解密，只有最终聚合密文
才进入（门限）解密。
"""

from __future__ import annotations

import logging
import math
import secrets
import warnings
from dataclasses import dataclass
from typing import Tuple

from phe.util import getprimeover, is_prime

from constants import (
    INSECURE_TEST_PRIMES,
    KEYPAIR_VALIDATION_ATTEMPTS,
    MILLER_RABIN_ROUNDS,
    MIN_PAILLIER_BITS,
    PRIME_PAIR_ATTEMPTS,
)
from errors import CryptoFailureError, ValidationError
from number_theory import lcm, random_coprime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaillierPublicKey:
    n: int

    def __post_init__(self) -> None:
        if self.n < 15 or self.n % 2 == 0:
            raise ValidationError("Paillier modulus must be an odd composite")

    @property
    def g(self) -> int:
        return self.n + 1

    @property
    def n_squared(self) -> int:
        return self.n * self.n

    def to_dict(self) -> dict:
        return {"n": self.n}

    @classmethod
    def from_dict(cls, data: dict) -> "PaillierPublicKey":
        try:
            return cls(int(data["n"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed Paillier public key: {exc}") from exc


@dataclass(frozen=True)
class PaillierPrivateKey:
    public_key: PaillierPublicKey
    lam: int
    mu: int

    def __post_init__(self) -> None:
        n = self.public_key.n
        if not 0 < self.lam < n or not 0 < self.mu < n:
            raise ValidationError("Paillier private key components out of range")

    @property
    def n(self) -> int:
        return self.public_key.n


def L(x: int, n: int) -> int:
    """L(x) = (x - 1) / n."""
    return (x - 1) // n


def generate_keypair(bits: int, insecure_test_mode: bool = False) -> Tuple[PaillierPublicKey, PaillierPrivateKey]:
    """生成并验证Paillier密钥对 / Generate a round-trip validated key pair.

    The pair is accepted only if ``decrypt(encrypt(m)) == m`` for a random test
    value; a failing pair is discarded and regenerated, up to
    ``KEYPAIR_VALIDATION_ATTEMPTS`` times.

    ``insecure_test_mode`` swaps the prime search for a fixed, publicly known
    prime pair. Anyone can factor the resulting modulus; it exists only to keep
    slow test suites fast and must never be used for a real election.
    """
    if insecure_test_mode:
        message = "Paillier INSECURE TEST MODE: using a fixed, public prime pair; ciphertexts are NOT confidential"
        logger.warning(message)
        warnings.warn(message, RuntimeWarning, stacklevel=2)
    elif bits < MIN_PAILLIER_BITS or bits % 2:
        raise ValidationError(f"Paillier key size must be an even number >= {MIN_PAILLIER_BITS}, got {bits}")

    for attempt in range(1, KEYPAIR_VALIDATION_ATTEMPTS + 1):
        if insecure_test_mode:
            p, q = INSECURE_TEST_PRIMES
        else:
            p, q = generate_prime_pair(bits)
        try:
            public_key, private_key = keypair_from_primes(p, q)
        except ValidationError as exc:
            logger.warning("Discarding Paillier prime pair (attempt %d): %s", attempt, exc)
            continue

        test_value = secrets.randbelow(public_key.n)
        if decrypt(encrypt(test_value, public_key), private_key) == test_value:
            logger.info("Generated %d-bit Paillier key pair (attempt %d)", public_key.n.bit_length(), attempt)
            return public_key, private_key
        logger.warning("Paillier key pair failed round-trip validation (attempt %d)", attempt)

    raise CryptoFailureError(f"Could not produce a valid Paillier key pair in {KEYPAIR_VALIDATION_ATTEMPTS} attempts")


def generate_prime_pair(bits: int) -> Tuple[int, int]:
    """两个 bits/2 位的不同素数，乘积恰为 bits 位 / Primes from phe, bounded retries."""
    for _ in range(PRIME_PAIR_ATTEMPTS):
        p = getprimeover(bits // 2)
        q = getprimeover(bits // 2)
        if p != q and (p * q).bit_length() == bits:
            return p, q
    raise CryptoFailureError(f"No {bits}-bit modulus after {PRIME_PAIR_ATTEMPTS} prime pairs")


def keypair_from_primes(p: int, q: int) -> Tuple[PaillierPublicKey, PaillierPrivateKey]:
    if p == q:
        raise ValidationError("Paillier primes must be distinct")
    if not (is_prime(p, MILLER_RABIN_ROUNDS) and is_prime(q, MILLER_RABIN_ROUNDS)):
        raise ValidationError("Paillier factors must be prime")
    n = p * q
    if math.gcd(n, (p - 1) * (q - 1)) != 1:
        raise ValidationError("gcd(n, phi(n)) != 1")
    public_key = PaillierPublicKey(n)
    lam = lcm(p - 1, q - 1)
    # g = n + 1, so L(g^lambda mod n^2) = lambda mod n
    try:
        mu = pow(L(pow(public_key.g, lam, public_key.n_squared), n), -1, n)
    except ValueError as exc:
        raise ValidationError("L(g^lambda) is not invertible mod n") from exc
    return public_key, PaillierPrivateKey(public_key, lam, mu)


def _check_plaintext(m: int, public_key: PaillierPublicKey) -> None:
    if not 0 <= m < public_key.n:
        raise ValidationError("Plaintext outside [0, n)")


def check_ciphertext(c: int, public_key: PaillierPublicKey) -> None:
    """密文合法性 / c must be a unit of Z*_{n^2}."""
    if not 0 < c < public_key.n_squared or math.gcd(c, public_key.n) != 1:
        raise ValidationError("Ciphertext is not an element of Z*_{n^2}")


def encrypt(m: int, public_key: PaillierPublicKey) -> int:
    return encrypt_with_nonce(m, public_key)[0]


def encrypt_with_nonce(m: int, public_key: PaillierPublicKey) -> Tuple[int, int]:
    """(密文, 随机数 r) / The nonce is what a validity proof is built from."""
    _check_plaintext(m, public_key)
    n, n_sq = public_key.n, public_key.n_squared
    r = random_coprime(n)
    # g^m = (1 + n)^m = 1 + m*n  (mod n^2)
    return ((1 + m * n) * pow(r, n, n_sq)) % n_sq, r


def decrypt(c: int, private_key: PaillierPrivateKey) -> int:
    public_key = private_key.public_key
    check_ciphertext(c, public_key)
    return (L(pow(c, private_key.lam, public_key.n_squared), public_key.n) * private_key.mu) % public_key.n


def add_encrypted(c1: int, c2: int, public_key: PaillierPublicKey) -> int:
    """同态加法 / E(m1) * E(m2) = E(m1 + m2 mod n)."""
    check_ciphertext(c1, public_key)
    check_ciphertext(c2, public_key)
    return (c1 * c2) % public_key.n_squared


def multiply_by_constant(c: int, k: int, public_key: PaillierPublicKey) -> int:
    """E(m)^k = E(k * m mod n)."""
    check_ciphertext(c, public_key)
    if k < 0:
        raise ValidationError("Scalar must be non-negative")
    return pow(c, k, public_key.n_squared)


def encrypt_zero(public_key: PaillierPublicKey) -> int:
    return encrypt(0, public_key)


def rerandomize(c: int, public_key: PaillierPublicKey) -> int:
    """Fresh ciphertext of the same plaintext."""
    return add_encrypted(c, encrypt_zero(public_key), public_key)
