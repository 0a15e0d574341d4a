"""RSA blind signatures for anonymous voter authorization.

选民把选票承诺盲化后交给管理机构签名，机构只记录"谁"已经领过签名，
从不看到被签的内容；选民去盲后得到一个普通的 RSA 签名。
"""

from __future__ import annotations

import hashlib
import logging
import math
import secrets
import threading
from dataclasses import dataclass
from typing import Set, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from clock import Clock
from constants import (
    BLIND_SESSION_TTL,
    BLINDING_FACTOR_ATTEMPTS,
    DEFAULT_RSA_BITS,
    MIN_RSA_BITS,
    RSA_PUBLIC_EXPONENT,
)
from data_models import BlindSignatureSession
from errors import CryptoFailureError, DuplicateAuthorizationError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorityPublicKey:
    n: int
    e: int

    def __post_init__(self) -> None:
        if self.n <= 0 or self.n % 2 == 0:
            raise ValidationError("RSA modulus must be a positive odd integer")
        if self.n.bit_length() < MIN_RSA_BITS:
            raise ValidationError(f"RSA modulus shorter than {MIN_RSA_BITS} bits")
        if not 1 < self.e < self.n or self.e % 2 == 0:
            raise ValidationError("RSA public exponent must be odd and within (1, n)")

    @property
    def byte_length(self) -> int:
        return (self.n.bit_length() + 7) // 8

    def to_pem(self) -> bytes:
        return (
            rsa.RSAPublicNumbers(self.e, self.n)
            .public_key()
            .public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        )

    def to_dict(self) -> dict:
        return {"n": self.n, "e": self.e}


@dataclass(frozen=True)
class AuthorityPrivateKey:
    n: int
    e: int
    d: int

    def __post_init__(self) -> None:
        if not 0 < self.d < self.n:
            raise ValidationError("RSA private exponent out of range")

    @property
    def public_key(self) -> AuthorityPublicKey:
        return AuthorityPublicKey(self.n, self.e)

    def to_pem(self) -> bytes:
        """PKCS#8 PEM; the CRT parameters are recovered from (n, e, d)."""
        p, q = rsa.rsa_recover_prime_factors(self.n, self.e, self.d)
        numbers = rsa.RSAPrivateNumbers(
            p=p,
            q=q,
            d=self.d,
            dmp1=rsa.rsa_crt_dmp1(self.d, p),
            dmq1=rsa.rsa_crt_dmq1(self.d, q),
            iqmp=rsa.rsa_crt_iqmp(p, q),
            public_numbers=rsa.RSAPublicNumbers(self.e, self.n),
        )
        return numbers.private_key().private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )


def generate_authority_keys(bits: int = DEFAULT_RSA_BITS) -> Tuple[AuthorityPrivateKey, AuthorityPublicKey]:
    """生成管理机构的RSA密钥对 / Generate the authority's RSA key pair."""
    if bits < MIN_RSA_BITS:
        raise ValidationError(f"RSA key size must be at least {MIN_RSA_BITS} bits, got {bits}")
    key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=bits)
    private_key = _from_private_numbers(key.private_numbers())
    logger.info("Generated %d-bit RSA blind-signature key", bits)
    return private_key, private_key.public_key


def load_authority_private_key(pem: bytes, password: bytes | None = None) -> AuthorityPrivateKey:
    try:
        key = serialization.load_pem_private_key(pem, password=password)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Unreadable authority private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValidationError("Authority private key is not an RSA key")
    return _from_private_numbers(key.private_numbers())


def load_authority_public_key(pem: bytes) -> AuthorityPublicKey:
    try:
        key = serialization.load_pem_public_key(pem)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Unreadable authority public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValidationError("Authority public key is not an RSA key")
    numbers = key.public_numbers()
    return AuthorityPublicKey(numbers.n, numbers.e)


def _from_private_numbers(numbers: rsa.RSAPrivateNumbers) -> AuthorityPrivateKey:
    public = numbers.public_numbers
    return AuthorityPrivateKey(n=public.n, e=public.e, d=numbers.d)


def hash_to_int(message: bytes | str, public_key: AuthorityPublicKey) -> int:
    """全域哈希 / SHAKE-256 expanded past the modulus length, reduced mod n."""
    if isinstance(message, str):
        message = message.encode()
    digest = hashlib.shake_256(message).digest(public_key.byte_length + 16)
    return int.from_bytes(digest, "big") % public_key.n


def generate_blinding_factor(public_key: AuthorityPublicKey) -> Tuple[int, int]:
    """随机盲化因子 r 及其逆元 / Random r coprime to n and r^-1 mod n."""
    n = public_key.n
    for _ in range(BLINDING_FACTOR_ATTEMPTS):
        r = 2 + secrets.randbelow(n - 3)
        if math.gcd(r, n) == 1:
            return r, pow(r, -1, n)
    raise CryptoFailureError(f"No blinding factor coprime to n after {BLINDING_FACTOR_ATTEMPTS} attempts")


def blind(message: bytes | str, r: int, public_key: AuthorityPublicKey) -> int:
    """H(m) * r^e mod n."""
    if not 1 < r < public_key.n:
        raise ValidationError("Blinding factor out of range")
    return (hash_to_int(message, public_key) * pow(r, public_key.e, public_key.n)) % public_key.n


def sign(blinded_value: int, private_key: AuthorityPrivateKey) -> int:
    """机构对盲化值签名，看不到原文 / blinded^d mod n."""
    if not 0 <= blinded_value < private_key.n:
        raise ValidationError("Blinded value outside [0, n)")
    return pow(blinded_value, private_key.d, private_key.n)


def unblind(blind_signature: int, r_inverse: int, public_key: AuthorityPublicKey) -> int:
    if not 0 <= blind_signature < public_key.n:
        raise ValidationError("Blind signature outside [0, n)")
    return (blind_signature * r_inverse) % public_key.n


def verify(message: bytes | str, signature: int, public_key: AuthorityPublicKey) -> bool:
    """s^e mod n == H(m)."""
    if not isinstance(signature, int) or not 0 < signature < public_key.n:
        return False
    return pow(signature, public_key.e, public_key.n) == hash_to_int(message, public_key)


def start_session(message: bytes | str, public_key: AuthorityPublicKey, clock: Clock) -> BlindSignatureSession:
    """选民侧：盲化承诺并记录会话 / Voter side: blind the message, keep the factors locally."""
    r, r_inverse = generate_blinding_factor(public_key)
    return BlindSignatureSession(
        blinding_factor=r,
        r_inverse=r_inverse,
        blinded_hash=blind(message, r, public_key),
        created_at=clock.now(),
    )


def finish_session(
    session: BlindSignatureSession,
    blind_signature: int,
    message: bytes | str,
    public_key: AuthorityPublicKey,
    clock: Clock,
    ttl: float = BLIND_SESSION_TTL,
) -> int:
    """Unblind the issued signature and verify it before use."""
    if session.is_expired(clock.now(), ttl):
        raise ValidationError("Blind signature session expired")
    signature = unblind(blind_signature, session.r_inverse, public_key)
    if not verify(message, signature, public_key):
        raise CryptoFailureError("Unblinded signature does not verify against the authority key")
    session.issued_signature = signature
    return signature


class BlindSignatureAuthority:
    """盲签名机构 / Issues at most one blind signature per voter per election.

    Only the ``(election_id, voter_id)`` pair is recorded; the blinded value
    itself is signed and forgotten.
    """

    def __init__(self, private_key: AuthorityPrivateKey, registry) -> None:
        self._private_key = private_key
        self.public_key = private_key.public_key
        self.registry = registry
        self._issued: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def request_authorization(self, election_id: str, voter_id: str, blinded_hash: int) -> int:
        if not isinstance(blinded_hash, int) or not 0 < blinded_hash < self.public_key.n:
            raise ValidationError("Blinded hash outside (0, n)")
        with self._lock:
            if not self.registry.is_eligible(election_id, voter_id):
                logger.warning("[Authorizer] Voter %s is not eligible for election %s", voter_id, election_id)
                raise ValidationError(f"Voter {voter_id} is not eligible for election {election_id}")
            if (election_id, voter_id) in self._issued:
                logger.warning("[Authorizer] Refusing second authorization for %s in %s", voter_id, election_id)
                raise DuplicateAuthorizationError(f"Voter {voter_id} already authorized for election {election_id}")
            signature = sign(blinded_hash, self._private_key)
            self._issued.add((election_id, voter_id))
        logger.info("[Authorizer] Issued blind signature for election %s", election_id)
        return signature

    def has_authorized(self, election_id: str, voter_id: str) -> bool:
        with self._lock:
            return (election_id, voter_id) in self._issued
