"""Hash-chained, append-only ballot ledger."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence, Set, Tuple

from cryptography.hazmat.primitives.asymmetric import ed25519

from constants import GENESIS_PREVIOUS_HASH, GENESIS_TIMESTAMP
from crypto_manager import CryptoManager
from data_models import Ballot, canonical_json, sha256_hex
from errors import DuplicateVoteError, ValidationError
from merkle import MerkleTree, ProofStep, merkle_root

logger = logging.getLogger(__name__)

GENESIS_VALIDATOR = "genesis"


@dataclass(frozen=True)
class Block:
    """区块 / Immutable block; ``hash`` covers every field except the signature."""

    index: int
    previous_hash: str
    timestamp: float
    ballots: Tuple[Ballot, ...]
    merkle_root: str
    validator_id: str
    hash: str = ""
    signature: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "ballots", tuple(self.ballots))

    @classmethod
    def create(
        cls,
        index: int,
        previous_hash: str,
        timestamp: float,
        ballots: Sequence[Ballot],
        validator_id: str,
        signing_key: ed25519.Ed25519PrivateKey | None = None,
    ) -> "Block":
        """在内存中组装并签名 / Assemble, hash and sign a block in memory."""
        unsigned = cls(
            index=index,
            previous_hash=previous_hash,
            timestamp=float(timestamp),
            ballots=tuple(ballots),
            merkle_root=merkle_root([b.ballot_hash() for b in ballots]),
            validator_id=validator_id,
        )
        block_hash = unsigned.calculate_hash()
        signature = CryptoManager.sign_block_hash(block_hash, signing_key) if signing_key is not None else ""
        return cls(
            index=unsigned.index,
            previous_hash=unsigned.previous_hash,
            timestamp=unsigned.timestamp,
            ballots=unsigned.ballots,
            merkle_root=unsigned.merkle_root,
            validator_id=validator_id,
            hash=block_hash,
            signature=signature,
        )

    def _hash_payload(self) -> dict:
        return {
            "index": self.index,
            "previousHash": self.previous_hash,
            "timestamp": self.timestamp,
            "ballots": [b.to_dict() for b in self.ballots],
            "merkleRoot": self.merkle_root,
            "validatorId": self.validator_id,
        }

    def calculate_hash(self) -> str:
        return sha256_hex(canonical_json(self._hash_payload()))

    def ballot_hashes(self) -> List[str]:
        return [b.ballot_hash() for b in self.ballots]

    def to_dict(self) -> dict:
        payload = self._hash_payload()
        payload["hash"] = self.hash
        payload["signature"] = self.signature
        return payload

    @classmethod
    def from_dict(cls, data: dict) -> "Block":
        try:
            return cls(
                index=int(data["index"]),
                previous_hash=str(data["previousHash"]),
                timestamp=float(data["timestamp"]),
                ballots=tuple(Ballot.from_dict(b) for b in data["ballots"]),
                merkle_root=str(data["merkleRoot"]),
                validator_id=str(data["validatorId"]),
                hash=str(data["hash"]),
                signature=str(data.get("signature", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed block: {exc}") from exc


def genesis_block() -> Block:
    """确定性创世块，各节点一致 / Deterministic genesis shared by every node."""
    return Block.create(0, GENESIS_PREVIOUS_HASH, GENESIS_TIMESTAMP, (), GENESIS_VALIDATOR)


BallotCheck = Callable[[Ballot], None]


class Ledger:
    """账本 / Chain plus a per-election key-image index, single writer.

    ``authority_keys`` maps validator ids to raw Ed25519 public keys; every
    non-genesis block must carry a valid signature from one of them. With no
    keys configured nothing beyond genesis is ever accepted.
    """

    def __init__(self, authority_keys: Dict[str, bytes] | None = None) -> None:
        self.authority_keys: Dict[str, bytes] = dict(authority_keys or {})
        self._lock = threading.RLock()
        self._chain: List[Block] = []
        self._key_images: Dict[str, Set[str]] = {}
        self._ballot_locations: Dict[str, int] = {}
        self._reset([genesis_block()])

    # —— 读取 / reads ——

    @property
    def chain(self) -> List[Block]:
        with self._lock:
            return list(self._chain)

    @property
    def height(self) -> int:
        with self._lock:
            return len(self._chain)

    @property
    def last_block(self) -> Block:
        with self._lock:
            return self._chain[-1]

    def is_key_image_used(self, election_id: str, key_image: str) -> bool:
        with self._lock:
            return key_image in self._key_images.get(election_id, set())

    def get_blocks(self, election_id: str | None = None) -> List[Block]:
        """包含该选举选票的区块 / Non-genesis blocks, optionally filtered by election."""
        with self._lock:
            blocks = self._chain[1:]
        if election_id is None:
            return blocks
        return [b for b in blocks if any(ballot.election_id == election_id for ballot in b.ballots)]

    def get_ballots(self, election_id: str) -> List[Ballot]:
        return [
            ballot for block in self.get_blocks(election_id) for ballot in block.ballots if ballot.election_id == election_id
        ]

    def inclusion_proof(self, ballot_hash: str) -> Tuple[int, str, List[ProofStep]]:
        """(区块高度, Merkle根, 路径) / Locate a ballot and prove its inclusion."""
        with self._lock:
            if ballot_hash not in self._ballot_locations:
                raise KeyError(f"Ballot {ballot_hash} is not on the ledger")
            block = self._chain[self._ballot_locations[ballot_hash]]
        hashes = block.ballot_hashes()
        proof = MerkleTree(hashes).get_proof(hashes.index(ballot_hash))
        return block.index, block.merkle_root, proof

    @staticmethod
    def verify_inclusion(ballot_hash: str, proof: Sequence[ProofStep], root: str) -> bool:
        return MerkleTree.verify_proof(ballot_hash, proof, root)

    # —— 写入 / writes ——

    def append_block(self, block: Block) -> None:
        """单次原子追加 / Validate against the tip and append in one step."""
        with self._lock:
            self._check_link(block, self._chain[-1])
            seen: Set[Tuple[str, str]] = set()
            for ballot in block.ballots:
                marker = (ballot.election_id, ballot.key_image)
                if marker in seen or self.is_key_image_used(*marker):
                    raise DuplicateVoteError(f"Key image {ballot.key_image[:16]}... already on the ledger")
                seen.add(marker)
            self._chain.append(block)
            self._index_block(block, len(self._chain) - 1)
        logger.info("Appended block #%d with %d ballots (%s...)", block.index, len(block.ballots), block.hash[:16])

    def replace_chain(self, blocks: Sequence[Block], ballot_check: BallotCheck | None = None) -> None:
        """整链替换 / Adopt a whole peer chain after validating it."""
        blocks = list(blocks)
        if not self.validate_chain(blocks, ballot_check):
            raise ValidationError("Refusing to adopt an invalid chain")
        with self._lock:
            self._reset(blocks)
        logger.info("Replaced local chain; new height %d", len(blocks))

    # —— 校验 / validation ——

    def validate_chain(self, blocks: Sequence[Block], ballot_check: BallotCheck | None = None) -> bool:
        """Genesis, linkage, hashes, signatures, key-image uniqueness and optional per-ballot checks."""
        if not blocks or blocks[0] != genesis_block():
            logger.warning("Chain rejected: genesis block mismatch")
            return False
        seen: Set[Tuple[str, str]] = set()
        for previous, block in zip(blocks, blocks[1:]):
            try:
                self._check_link(block, previous)
                for ballot in block.ballots:
                    marker = (ballot.election_id, ballot.key_image)
                    if marker in seen:
                        raise DuplicateVoteError(f"Key image repeated in block #{block.index}")
                    seen.add(marker)
                    if ballot_check is not None:
                        ballot_check(ballot)
            except (ValidationError, DuplicateVoteError) as exc:
                logger.warning("Chain rejected at block #%d: %s", block.index, exc)
                return False
        return True

    def _check_link(self, block: Block, previous: Block) -> None:
        if block.index != previous.index + 1:
            raise ValidationError(f"Block index {block.index} does not follow {previous.index}")
        if block.previous_hash != previous.hash:
            raise ValidationError(f"Block #{block.index} does not reference the previous block hash")
        if block.timestamp < previous.timestamp:
            raise ValidationError(f"Block #{block.index} timestamp goes backwards")
        if block.hash != block.calculate_hash():
            raise ValidationError(f"Block #{block.index} hash mismatch")
        if block.merkle_root != merkle_root(block.ballot_hashes()):
            raise ValidationError(f"Block #{block.index} Merkle root mismatch")
        public_bytes = self.authority_keys.get(block.validator_id)
        if public_bytes is None:
            raise ValidationError(f"Block #{block.index} produced by unknown validator {block.validator_id}")
        if not block.signature:
            raise ValidationError(f"Block #{block.index} is unsigned")
        if not CryptoManager.verify_block_signature(block.signature, block.hash, public_bytes):
            raise ValidationError(f"Block #{block.index} signature invalid")

    def _reset(self, blocks: Iterable[Block]) -> None:
        self._chain = list(blocks)
        self._key_images = {}
        self._ballot_locations = {}
        for position, block in enumerate(self._chain):
            self._index_block(block, position)

    def _index_block(self, block: Block, position: int) -> None:
        for ballot in block.ballots:
            self._key_images.setdefault(ballot.election_id, set()).add(ballot.key_image)
            self._ballot_locations[ballot.ballot_hash()] = position

    def to_dicts(self) -> List[dict]:
        return [block.to_dict() for block in self.chain]
