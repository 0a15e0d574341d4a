"""Non-interactive validity proofs for encrypted ballots.

每个密文附带一个析取 (OR) 证明：它加密的是公开集合中的某一个值，但不泄露是哪一个。
真实分支是 Paillier 上的 n 次剩余证明，其余分支先选挑战与响应再反推承诺，
各分支挑战之和等于 Fiat-Shamir 挑战 (mod 2^PROOF_CHALLENGE_BITS)。

* 指示向量：每个位置证明 ∈ {0, 1}，再对全部密文之积证明其加密 1，即恰好投一票。
* 打包编码：唯一的密文证明 ∈ {base^j}。
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from typing import List, Sequence, Tuple

from constants import PROOF_CHALLENGE_BITS, VOTE_PROOF_DOMAIN
from data_models import BallotProof, ElectionInfo, MembershipProof, canonical_json
from errors import ValidationError
from number_theory import random_coprime
from paillier import PaillierPublicKey, check_ciphertext
from vote_encoding import encode_vote

logger = logging.getLogger(__name__)

CHALLENGE_MASK = (1 << PROOF_CHALLENGE_BITS) - 1


def allowed_values(election: ElectionInfo, packed: bool = False) -> Tuple[int, ...]:
    """每个密文允许的明文 / Plaintexts a single ciphertext may carry."""
    if packed:
        return tuple(
            encode_vote(j, election.candidate_count, election.max_voters) for j in range(election.candidate_count)
        )
    return (0, 1)


def _shift(ciphertext: int, value: int, public_key: PaillierPublicKey) -> int:
    """c * g^-value: an n-th residue exactly when c encrypts ``value``."""
    n_sq = public_key.n_squared
    return (ciphertext * pow(public_key.g, -value, n_sq)) % n_sq


def _fiat_shamir(
    public_key: PaillierPublicKey,
    context: str,
    ciphertext: int,
    allowed: Sequence[int],
    commitments: Sequence[int],
) -> int:
    transcript = canonical_json(
        {
            "domain": VOTE_PROOF_DOMAIN,
            "context": context,
            "n": public_key.n,
            "ciphertext": ciphertext,
            "allowed": list(allowed),
            "commitments": list(commitments),
        }
    )
    return int.from_bytes(hashlib.sha256(transcript).digest(), "big") & CHALLENGE_MASK


def prove_membership(
    ciphertext: int,
    plaintext: int,
    nonce: int,
    allowed: Sequence[int],
    public_key: PaillierPublicKey,
    context: str,
) -> MembershipProof:
    """证明 c 加密了 allowed 中的某个值 / Prove ``ciphertext`` encrypts a member of ``allowed``.

    ``nonce`` is the encryption randomness r with c = g^plaintext * r^n mod n^2.
    ``context`` is hashed into the challenge, so a proof cannot be replayed
    for another slot or election.
    """
    allowed = list(allowed)
    if plaintext not in allowed:
        raise ValidationError("Plaintext is not one of the allowed values")
    n, n_sq = public_key.n, public_key.n_squared
    real = allowed.index(plaintext)
    size = len(allowed)

    commitments: List[int] = [0] * size
    challenges: List[int] = [0] * size
    responses: List[int] = [0] * size
    for j, value in enumerate(allowed):
        if j == real:
            continue
        # 模拟分支：a = z^n * u^-e
        challenges[j] = secrets.randbits(PROOF_CHALLENGE_BITS)
        responses[j] = random_coprime(n)
        shifted = _shift(ciphertext, value, public_key)
        commitments[j] = (pow(responses[j], n, n_sq) * pow(shifted, -challenges[j], n_sq)) % n_sq

    s = random_coprime(n)
    commitments[real] = pow(s, n, n_sq)
    challenge = _fiat_shamir(public_key, context, ciphertext, allowed, commitments)
    challenges[real] = (challenge - sum(challenges)) & CHALLENGE_MASK
    responses[real] = (s * pow(nonce, challenges[real], n)) % n
    return MembershipProof(commitments=commitments, challenges=challenges, responses=responses)


def verify_membership(
    ciphertext: int,
    proof: MembershipProof,
    allowed: Sequence[int],
    public_key: PaillierPublicKey,
    context: str,
) -> bool:
    allowed = list(allowed)
    size = len(allowed)
    if not (len(proof.commitments) == len(proof.challenges) == len(proof.responses) == size):
        return False
    n, n_sq = public_key.n, public_key.n_squared
    try:
        check_ciphertext(ciphertext, public_key)
        for a in proof.commitments:
            check_ciphertext(a, public_key)
    except ValidationError:
        return False
    if any(not 0 <= e <= CHALLENGE_MASK for e in proof.challenges):
        return False
    if any(not 0 < z < n for z in proof.responses):
        return False

    challenge = _fiat_shamir(public_key, context, ciphertext, allowed, proof.commitments)
    if sum(proof.challenges) & CHALLENGE_MASK != challenge:
        return False
    for value, a, e, z in zip(allowed, proof.commitments, proof.challenges, proof.responses):
        shifted = _shift(ciphertext, value, public_key)
        if pow(z, n, n_sq) != (a * pow(shifted, e, n_sq)) % n_sq:
            return False
    return True


def _slot_context(election_id: str, index: int) -> str:
    return f"{election_id}/slot/{index}"


def _total_context(election_id: str) -> str:
    return f"{election_id}/total"


def _product(values: Sequence[int], modulus: int) -> int:
    result = 1
    for value in values:
        result = (result * value) % modulus
    return result


def prove_ballot(
    election: ElectionInfo,
    ciphertexts: Sequence[int],
    plaintexts: Sequence[int],
    nonces: Sequence[int],
    public_key: PaillierPublicKey,
    packed: bool = False,
) -> BallotProof:
    """为整张选票生成证明 / Slot proofs, plus a sum-is-one proof for indicator vectors."""
    if not len(ciphertexts) == len(plaintexts) == len(nonces):
        raise ValidationError("Ciphertexts, plaintexts and nonces must line up")
    allowed = allowed_values(election, packed)
    slots = [
        prove_membership(c, m, r, allowed, public_key, _slot_context(election.election_id, i))
        for i, (c, m, r) in enumerate(zip(ciphertexts, plaintexts, nonces))
    ]
    total = None
    if not packed:
        # prod c_i = g^(sum m_i) * (prod r_i)^n
        total = prove_membership(
            _product(ciphertexts, public_key.n_squared),
            sum(plaintexts),
            _product(nonces, public_key.n),
            (1,),
            public_key,
            _total_context(election.election_id),
        )
    return BallotProof(slots=slots, total=total)


def verify_ballot(
    election: ElectionInfo,
    ciphertexts: Sequence[int],
    proof: BallotProof,
    public_key: PaillierPublicKey,
    packed: bool = False,
) -> bool:
    """校验整张选票 / Every slot is in range and, for indicator vectors, exactly one slot is set."""
    if len(proof.slots) != len(ciphertexts):
        return False
    allowed = allowed_values(election, packed)
    for i, (ciphertext, slot_proof) in enumerate(zip(ciphertexts, proof.slots)):
        if not verify_membership(ciphertext, slot_proof, allowed, public_key, _slot_context(election.election_id, i)):
            logger.debug("Validity proof failed for slot %d of election %s", i, election.election_id)
            return False
    if packed:
        return proof.total is None
    if proof.total is None:
        return False
    return verify_membership(
        _product(ciphertexts, public_key.n_squared),
        proof.total,
        (1,),
        public_key,
        _total_context(election.election_id),
    )
