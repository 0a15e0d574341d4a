"""Dataclasses shared across the voting pipeline.

持久化格式使用 camelCase 键名，与外部协作方交换的 JSON 保持一致。
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Sequence, Tuple

from errors import ValidationError


def canonical_json(payload: Any) -> bytes:
    """确定性序列化 / Deterministic JSON used for hashing and signing."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _int_tuple(values: Iterable[Any], name: str) -> Tuple[int, ...]:
    if isinstance(values, (str, bytes)):
        raise ValidationError(f"{name} must be a sequence of integers")
    try:
        items = list(values)
        if any(isinstance(v, bool) for v in items):
            raise ValidationError(f"{name} must not contain booleans")
        return tuple(int(v) for v in items)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a sequence of integers") from exc


def ballot_commitment(election_id: str, candidate_vector: Sequence[int]) -> str:
    """选票承诺 / Commitment the authority blind-signs without seeing it."""
    return sha256_hex(
        canonical_json({"electionId": election_id, "candidateVector": [int(c) for c in candidate_vector]})
    )


def ballot_signing_payload(
    election_id: str,
    candidate_vector: Sequence[int],
    voter_commitment: str,
    blind_signature_proof: int,
    validity_proof: BallotProof | None = None,
) -> bytes:
    """环签名覆盖的消息 / Message covered by the ballot's ring signature."""
    return canonical_json(
        {
            "electionId": election_id,
            "candidateVector": [int(c) for c in candidate_vector],
            "voterCommitment": voter_commitment,
            "blindSignatureProof": int(blind_signature_proof),
            "validityProof": validity_proof.to_dict() if validity_proof is not None else None,
        }
    )


@dataclass(frozen=True)
class RingSignature:
    """可链接环签名 / Linkable ring signature over secp256k1."""

    challenges: Tuple[int, ...]
    responses: Tuple[int, ...]
    key_image: str
    public_keys: Tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "challenges", _int_tuple(self.challenges, "challenges"))
        object.__setattr__(self, "responses", _int_tuple(self.responses, "responses"))
        object.__setattr__(self, "public_keys", tuple(str(pk) for pk in self.public_keys))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "challenges": list(self.challenges),
            "responses": list(self.responses),
            "keyImage": self.key_image,
            "publicKeys": list(self.public_keys),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RingSignature":
        try:
            return cls(
                challenges=data["challenges"],
                responses=data["responses"],
                key_image=str(data["keyImage"]),
                public_keys=data["publicKeys"],
            )
        except (KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed ring signature: {exc}") from exc


@dataclass(frozen=True)
class MembershipProof:
    """析取证明 / Non-interactive proof that a ciphertext encrypts one value of a public set."""

    commitments: Tuple[int, ...]
    challenges: Tuple[int, ...]
    responses: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "commitments", _int_tuple(self.commitments, "commitments"))
        object.__setattr__(self, "challenges", _int_tuple(self.challenges, "challenges"))
        object.__setattr__(self, "responses", _int_tuple(self.responses, "responses"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitments": list(self.commitments),
            "challenges": list(self.challenges),
            "responses": list(self.responses),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MembershipProof":
        try:
            return cls(
                commitments=data["commitments"],
                challenges=data["challenges"],
                responses=data["responses"],
            )
        except (KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed membership proof: {exc}") from exc


@dataclass(frozen=True)
class BallotProof:
    """选票有效性证明 / One proof per ciphertext plus, for indicator vectors, a sum-is-one proof."""

    slots: Tuple[MembershipProof, ...]
    total: MembershipProof | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "slots", tuple(self.slots))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slots": [proof.to_dict() for proof in self.slots],
            "total": self.total.to_dict() if self.total is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BallotProof":
        try:
            total = data.get("total")
            return cls(
                slots=tuple(MembershipProof.from_dict(item) for item in data["slots"]),
                total=MembershipProof.from_dict(total) if total is not None else None,
            )
        except (AttributeError, KeyError, TypeError) as exc:
            raise ValidationError(f"Malformed ballot proof: {exc}") from exc


@dataclass(frozen=True)
class Ballot:
    """选票 / Authorized, anonymized, encrypted ballot. Immutable."""

    election_id: str
    candidate_vector: Tuple[int, ...]
    voter_commitment: str
    blind_signature_proof: int
    ring_signature: RingSignature
    submitted_at: float
    validity_proof: BallotProof | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "candidate_vector", _int_tuple(self.candidate_vector, "candidate_vector"))
        object.__setattr__(self, "blind_signature_proof", int(self.blind_signature_proof))
        object.__setattr__(self, "submitted_at", float(self.submitted_at))

    @property
    def key_image(self) -> str:
        return self.ring_signature.key_image

    def signing_payload(self) -> bytes:
        return ballot_signing_payload(
            self.election_id,
            self.candidate_vector,
            self.voter_commitment,
            self.blind_signature_proof,
            self.validity_proof,
        )

    def ballot_hash(self) -> str:
        return sha256_hex(canonical_json(self.to_dict()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "electionId": self.election_id,
            "candidateVector": list(self.candidate_vector),
            "voterCommitment": self.voter_commitment,
            "blindSignatureProof": self.blind_signature_proof,
            "ringSignature": self.ring_signature.to_dict(),
            "submittedAt": self.submitted_at,
            "validityProof": self.validity_proof.to_dict() if self.validity_proof is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ballot":
        try:
            proof = data.get("validityProof")
            return cls(
                election_id=str(data["electionId"]),
                candidate_vector=data["candidateVector"],
                voter_commitment=str(data["voterCommitment"]),
                blind_signature_proof=int(data["blindSignatureProof"]),
                ring_signature=RingSignature.from_dict(data["ringSignature"]),
                submitted_at=float(data["submittedAt"]),
                validity_proof=BallotProof.from_dict(proof) if proof is not None else None,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed ballot: {exc}") from exc


@dataclass(frozen=True)
class KeyShare:
    """Shamir份额 / One authority's share of the Paillier decryption exponent."""

    index: int
    value: int
    n: int
    t: int
    share_count: int

    def __post_init__(self) -> None:
        if self.index < 1 or self.index > self.share_count:
            raise ValidationError(f"Share index {self.index} outside 1..{self.share_count}")
        if not 1 <= self.t <= self.share_count:
            raise ValidationError(f"Threshold {self.t} outside 1..{self.share_count}")
        if self.n <= 1 or self.value < 0:
            raise ValidationError("Share modulus and value must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "value": self.value, "n": self.n, "t": self.t, "shareCount": self.share_count}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyShare":
        try:
            return cls(
                index=int(data["index"]),
                value=int(data["value"]),
                n=int(data["n"]),
                t=int(data["t"]),
                share_count=int(data["shareCount"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed key share: {exc}") from exc


@dataclass(frozen=True)
class PartialDecryption:
    """部分解密 / One share holder's ``c^share mod n^2`` per tally ciphertext."""

    authority_id: str
    share_index: int
    values: Tuple[int, ...]
    n: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", _int_tuple(self.values, "values"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authorityId": self.authority_id,
            "shareIndex": self.share_index,
            "values": list(self.values),
            "n": self.n,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartialDecryption":
        try:
            return cls(
                authority_id=str(data["authorityId"]),
                share_index=int(data["shareIndex"]),
                values=data["values"],
                n=int(data["n"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed partial decryption: {exc}") from exc


@dataclass
class BlindSignatureSession:
    """盲签名会话 / Voter-local blinding state; never sent to the server."""

    blinding_factor: int
    r_inverse: int
    blinded_hash: int
    created_at: float
    issued_signature: int | None = None

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at > ttl


@dataclass(frozen=True)
class ElectionInfo:
    """选举元数据 / Metadata supplied by the election directory."""

    election_id: str
    candidate_count: int
    max_voters: int

    def __post_init__(self) -> None:
        if not self.election_id:
            raise ValidationError("election_id must not be empty")
        if self.candidate_count < 1:
            raise ValidationError("An election needs at least one candidate")
        if self.max_voters < 1:
            raise ValidationError("max_voters must be positive")


@dataclass(frozen=True)
class SubmissionResult:
    accepted: bool
    reason: str | None = None


@dataclass
class PerformanceStats:
    """性能统计数据类 / Collects timing and operation counts for each phase."""

    phase_name: str
    duration: float
    operations: Dict[str, int] = field(default_factory=dict)
