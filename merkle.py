"""Merkle树工具 / Merkle commitments over the ballots of a block."""

from __future__ import annotations

import hashlib
from typing import List, Sequence, Tuple

EMPTY_ROOT = hashlib.sha256(b"").hexdigest()

ProofStep = Tuple[str, str]


def hash_pair(left: str, right: str) -> str:
    """父节点哈希 = H(left || right)."""
    return hashlib.sha256((left + right).encode()).hexdigest()


class MerkleTree:
    """Merkle树构建与验证 / Levels of a Merkle tree built over ballot hashes."""

    def __init__(self, leaves: Sequence[str]) -> None:
        self.leaves: List[str] = list(leaves)
        self.levels: List[List[str]] = self._build_levels(self.leaves)

    @staticmethod
    def _build_levels(leaves: List[str]) -> List[List[str]]:
        if not leaves:
            return [[EMPTY_ROOT]]
        levels = [list(leaves)]
        while len(levels[-1]) > 1:
            level = levels[-1]
            # 奇数个节点时复制最后一个以保证配对
            if len(level) % 2 == 1:
                level = level + [level[-1]]
            levels.append([hash_pair(level[i], level[i + 1]) for i in range(0, len(level), 2)])
        return levels

    @property
    def root(self) -> str:
        return self.levels[-1][0]

    def get_proof(self, index: int) -> List[ProofStep]:
        """生成叶子的认证路径 / Sibling hashes from leaf ``index`` up to the root."""
        if not 0 <= index < len(self.leaves):
            raise IndexError(f"Leaf index {index} out of range")
        proof: List[ProofStep] = []
        idx = index
        for level in self.levels[:-1]:
            if idx % 2 == 1:
                proof.append((level[idx - 1], "left"))
            else:
                sibling = level[idx + 1] if idx + 1 < len(level) else level[idx]
                proof.append((sibling, "right"))
            idx //= 2
        return proof

    @staticmethod
    def verify_proof(leaf_hash: str, proof: Sequence[ProofStep], root_hash: str) -> bool:
        computed = leaf_hash
        for sibling, position in proof:
            if position == "left":
                computed = hash_pair(sibling, computed)
            elif position == "right":
                computed = hash_pair(computed, sibling)
            else:
                return False
        return computed == root_hash


def merkle_root(leaves: Sequence[str]) -> str:
    return MerkleTree(leaves).root
