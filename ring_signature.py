"""Linkable ring signatures (LSAG) over secp256k1.

签名者证明自己属于选民公钥集合而不暴露是哪一个；密钥镜像 I = x * H_p(P)
对同一签名者恒定，用于检测重复投票。曲线运算使用 ecdsa 包。
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from functools import lru_cache
from typing import List, Sequence, Tuple

from ecdsa import SECP256k1
from ecdsa import numbertheory
from ecdsa.ellipticcurve import INFINITY, PointJacobi
from ecdsa.errors import MalformedPointError

from constants import HASH_TO_CURVE_ATTEMPTS, HASH_TO_CURVE_DOMAIN, MIN_RING_SIZE, RING_CHALLENGE_DOMAIN
from data_models import RingSignature
from errors import CryptoFailureError, ValidationError

logger = logging.getLogger(__name__)

CURVE = SECP256k1
G = CURVE.generator
ORDER = CURVE.order
FIELD_PRIME = CURVE.curve.p()


# —— 点编码 / point encoding ——

def encode_point(point) -> str:
    """SEC1压缩编码的十六进制串 / Compressed SEC1 hex."""
    if point == INFINITY:
        raise ValidationError("Point at infinity has no encoding")
    return point.to_bytes("compressed").hex()


def decode_point(encoded: str) -> PointJacobi:
    try:
        data = bytes.fromhex(encoded)
        point = PointJacobi.from_bytes(CURVE.curve, data, valid_encodings=("compressed",), order=ORDER)
    except (TypeError, ValueError, MalformedPointError) as exc:
        raise ValidationError(f"Malformed curve point {encoded!r}") from exc
    if point == INFINITY:
        raise ValidationError("Point at infinity is not a valid key")
    return point


def normalize_public_key(public_key: str) -> str:
    return encode_point(decode_point(public_key))


def _random_scalar() -> int:
    return 1 + secrets.randbelow(ORDER - 1)


def _check_scalar(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value < ORDER:
        raise ValidationError(f"{name} must be an integer in [1, q)")


# —— 密钥 / keys ——

def derive_public_key(private_key: int) -> str:
    _check_scalar(private_key, "private key")
    return encode_point(G * private_key)


def generate_keypair() -> Tuple[int, str]:
    """生成选民签名密钥对 / (private scalar, compressed public key hex)."""
    private_key = _random_scalar()
    return private_key, derive_public_key(private_key)


@lru_cache(maxsize=4096)
def _hash_to_point_cached(public_key: str) -> PointJacobi:
    encoded = bytes.fromhex(public_key)
    a, b = CURVE.curve.a(), CURVE.curve.b()
    for counter in range(HASH_TO_CURVE_ATTEMPTS):
        digest = hashlib.sha256(HASH_TO_CURVE_DOMAIN + encoded + counter.to_bytes(4, "big")).digest()
        x = int.from_bytes(digest, "big")
        if x >= FIELD_PRIME:
            continue
        alpha = (pow(x, 3, FIELD_PRIME) + a * x + b) % FIELD_PRIME
        if alpha == 0 or numbertheory.jacobi(alpha, FIELD_PRIME) != 1:
            continue
        y = numbertheory.square_root_mod_prime(alpha, FIELD_PRIME)
        # 由摘要首字节决定 y 的奇偶
        if (y & 1) != (digest[0] & 1):
            y = FIELD_PRIME - y
        return PointJacobi(CURVE.curve, x, y, 1, ORDER)
    raise CryptoFailureError(f"hash_to_point found no curve point in {HASH_TO_CURVE_ATTEMPTS} attempts")


def hash_to_point(public_key: str) -> PointJacobi:
    """拒绝采样的哈希到曲线 / Rejection-sampling hash-to-curve, no generator fallback."""
    return _hash_to_point_cached(normalize_public_key(public_key))


def compute_key_image(private_key: int, public_key: str) -> str:
    """I = x * H_p(P)."""
    _check_scalar(private_key, "private key")
    if derive_public_key(private_key) != normalize_public_key(public_key):
        raise ValidationError("Private key does not match the public key")
    return encode_point(hash_to_point(public_key) * private_key)


# —— 哈希链 / challenge chain ——

def _message_digest(message: bytes, ring: Sequence[str], key_image: str) -> bytes:
    hasher = hashlib.sha256(message)
    for public_key in ring:
        hasher.update(bytes.fromhex(public_key))
    hasher.update(bytes.fromhex(key_image))
    return hasher.digest()


def _challenge(message_digest: bytes, left, right) -> int:
    if left == INFINITY or right == INFINITY:
        raise CryptoFailureError("Ring challenge chain hit the point at infinity")
    data = RING_CHALLENGE_DOMAIN + message_digest + left.to_bytes("compressed") + right.to_bytes("compressed")
    return int.from_bytes(hashlib.sha256(data).digest(), "big") % ORDER


def _as_bytes(message: bytes | str) -> bytes:
    return message.encode() if isinstance(message, str) else bytes(message)


def sign(message: bytes | str, private_key: int, ring: Sequence[str]) -> RingSignature:
    """以环成员身份签名 / Sign ``message`` as an anonymous member of ``ring``.

    The chain starts at the signer's successor: ``c[s+1] = H(m, aG, aH(P_s))``,
    every other member gets a random response, and the ring is closed with
    ``r[s] = a - c[s] * x mod q``. The result is verified before it is
    returned; a signature that does not close raises CryptoFailureError.
    """
    if len(ring) < MIN_RING_SIZE:
        raise ValidationError(f"Ring needs at least {MIN_RING_SIZE} members, got {len(ring)}")
    _check_scalar(private_key, "private key")
    points = [decode_point(pk) for pk in ring]
    ring_keys = [encode_point(p) for p in points]
    if len(set(ring_keys)) != len(ring_keys):
        raise ValidationError("Ring contains duplicate public keys")
    signer_key = derive_public_key(private_key)
    if signer_key not in ring_keys:
        raise ValidationError("Signer's public key is not a member of the ring")

    message = _as_bytes(message)
    size = len(ring_keys)
    signer = ring_keys.index(signer_key)
    hashed = [hash_to_point(pk) for pk in ring_keys]
    key_image_point = hashed[signer] * private_key
    key_image = encode_point(key_image_point)
    digest = _message_digest(message, ring_keys, key_image)

    challenges: List[int] = [0] * size
    responses: List[int] = [0] * size
    alpha = _random_scalar()
    challenges[(signer + 1) % size] = _challenge(digest, G * alpha, hashed[signer] * alpha)
    i = (signer + 1) % size
    while i != signer:
        responses[i] = _random_scalar()
        left = G * responses[i] + points[i] * challenges[i]
        right = hashed[i] * responses[i] + key_image_point * challenges[i]
        challenges[(i + 1) % size] = _challenge(digest, left, right)
        i = (i + 1) % size
    responses[signer] = (alpha - challenges[signer] * private_key) % ORDER

    signature = RingSignature(
        challenges=challenges,
        responses=responses,
        key_image=key_image,
        public_keys=ring_keys,
    )
    if not verify(message, signature):
        logger.error("Ring signature failed self-verification (ring size %d)", size)
        raise CryptoFailureError("Ring signature failed self-verification")
    return signature


def verify(message: bytes | str, signature: RingSignature) -> bool:
    """重建整条挑战链 / Recompute every (L_i, R_i) and check each link closes."""
    size = len(signature.public_keys)
    if size < MIN_RING_SIZE or len(signature.challenges) != size or len(signature.responses) != size:
        return False
    if any(not 0 <= v < ORDER for v in signature.challenges + signature.responses):
        return False
    try:
        points = [decode_point(pk) for pk in signature.public_keys]
        ring_keys = [encode_point(p) for p in points]
        if len(set(ring_keys)) != size:
            return False
        key_image_point = decode_point(signature.key_image)
        # 密钥镜像与环成员必须是规范的压缩编码
        if list(signature.public_keys) != ring_keys or signature.key_image != encode_point(key_image_point):
            logger.debug("Ring signature rejected: non-canonical point encoding")
            return False
        digest = _message_digest(_as_bytes(message), ring_keys, signature.key_image)
        for i in range(size):
            c, r = signature.challenges[i], signature.responses[i]
            left = G * r + points[i] * c
            right = hash_to_point(ring_keys[i]) * r + key_image_point * c
            if _challenge(digest, left, right) != signature.challenges[(i + 1) % size]:
                return False
    except (ValidationError, CryptoFailureError, MalformedPointError, ValueError) as exc:
        logger.debug("Ring signature rejected: %s", exc)
        return False
    return True


def is_linked(first: RingSignature, second: RingSignature) -> bool:
    """相同密钥镜像即同一签名者 / Same key image means same signer."""
    try:
        return normalize_public_key(first.key_image) == normalize_public_key(second.key_image)
    except ValidationError:
        return False
