"""Ledger node: the authority's drain cycle and the peer sync cycle."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from cryptography.hazmat.primitives.asymmetric import ed25519

from clock import Clock, SystemClock
from constants import BLOCK_INTERVAL, SYNC_INTERVAL
from crypto_manager import CryptoManager
from data_models import Ballot
from errors import ConsensusConflictError, DuplicateVoteError, NotAuthorityError, ValidationError
from ledger import Block, Ledger
from network_simulator import NetworkSimulator
from scheduler import PeriodicTask
from validation import BallotValidator

logger = logging.getLogger(__name__)


class NodeState(enum.Enum):
    IDLE = "idle"
    DRAINING = "draining"
    SYNCING = "syncing"


@dataclass(frozen=True)
class RejectedBallot:
    key_image: str | None
    reason: str
    error_type: str


@dataclass
class DrainReport:
    """出块周期报告 / Outcome of one drain cycle."""

    block: Block | None = None
    accepted: int = 0
    rejected: List[RejectedBallot] = field(default_factory=list)


class LedgerNode:
    """账本节点 / Authority (produces blocks) or read-only replica (sync only).

    Drain and sync are scheduled independently, each non-reentrant, and
    serialized against each other by ``_cycle_lock`` because both write the
    chain.
    """

    def __init__(
        self,
        node_id: str,
        ledger: Ledger,
        validator: BallotValidator,
        network: NetworkSimulator | None = None,
        is_authority: bool = False,
        signing_key: ed25519.Ed25519PrivateKey | None = None,
        clock: Clock | None = None,
        block_interval: float = BLOCK_INTERVAL,
        sync_interval: float = SYNC_INTERVAL,
    ) -> None:
        self.node_id = node_id
        self.ledger = ledger
        self.validator = validator
        self.network = network
        self.is_authority = is_authority
        self.clock = clock or SystemClock()
        self.fatal_error: ConsensusConflictError | None = None

        self._signing_key = signing_key
        if not is_authority and not ledger.authority_keys:
            raise ValidationError(f"Replica {node_id} needs the authority's block-signing public key")
        if is_authority:
            if self._signing_key is None:
                self._signing_key, _ = CryptoManager.generate_signature_keypair()
            self.ledger.authority_keys.setdefault(node_id, CryptoManager.public_bytes(self._signing_key))

        self._pending: List[Ballot] = []
        self._pending_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._state = NodeState.IDLE
        self._state_lock = threading.Lock()

        self._drain_task: PeriodicTask | None = None
        self._sync_task: PeriodicTask | None = None
        if is_authority:
            self._drain_task = PeriodicTask(f"{node_id}-drain", block_interval, self.drain)
            self._sync_task = PeriodicTask(
                f"{node_id}-sync", sync_interval, self.sync, fatal_errors=(ConsensusConflictError,)
            )
        if network is not None:
            network.register_node(node_id, self.ledger.to_dicts)

    @property
    def label(self) -> str:
        return f"[{'Authority' if self.is_authority else 'Replica'} {self.node_id}]"

    @property
    def signing_public_key(self) -> bytes | None:
        if self._signing_key is None:
            return None
        return CryptoManager.public_bytes(self._signing_key)

    @property
    def state(self) -> NodeState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: NodeState) -> None:
        with self._state_lock:
            self._state = state

    # —— 待处理队列 / pending queue ——

    def enqueue(self, ballots: Iterable[Ballot]) -> int:
        """接收混合网络释放的批次 / Receive a released mixnet batch."""
        batch = list(ballots)
        with self._pending_lock:
            self._pending.extend(batch)
        logger.debug("%s Queued %d ballots", self.label, len(batch))
        return len(batch)

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    # —— 出块 / drain ——

    def drain(self) -> DrainReport:
        """Validate every pending ballot and commit the valid ones as one block."""
        if not self.is_authority:
            raise NotAuthorityError(f"Node {self.node_id} is not the block authority")
        with self._cycle_lock:
            self._set_state(NodeState.DRAINING)
            try:
                return self._drain_pending()
            finally:
                self._set_state(NodeState.IDLE)

    def _drain_pending(self) -> DrainReport:
        with self._pending_lock:
            batch, self._pending = self._pending, []
        report = DrainReport()
        if not batch:
            return report

        accepted: List[Ballot] = []
        cycle_images = set()
        for ballot in batch:
            key_image = getattr(ballot, "key_image", None)
            try:
                self.validator.validate(ballot)
                marker = (ballot.election_id, key_image)
                if marker in cycle_images or self.ledger.is_key_image_used(*marker):
                    raise DuplicateVoteError("Key image already used in this election")
                cycle_images.add(marker)
                accepted.append(ballot)
            except (ValidationError, DuplicateVoteError) as exc:
                report.rejected.append(RejectedBallot(key_image, str(exc), type(exc).__name__))
                logger.warning("%s Rejected ballot: %s", self.label, exc)

        if accepted:
            last = self.ledger.last_block
            block = Block.create(
                index=last.index + 1,
                previous_hash=last.hash,
                timestamp=max(self.clock.now(), last.timestamp),
                ballots=accepted,
                validator_id=self.node_id,
                signing_key=self._signing_key,
            )
            self.ledger.append_block(block)
            report.block = block
            report.accepted = len(accepted)
            logger.info("%s Produced block #%d with %d ballots", self.label, block.index, len(accepted))
        if report.rejected:
            logger.info("%s Drain cycle rejected %d ballots", self.label, len(report.rejected))
        return report

    # —— 同步 / sync ——

    def sync(self) -> bool:
        """采用严格更长的合法链 / Adopt a strictly longer valid peer chain.

        Returns True when the local chain was replaced. Two different valid
        chains at the best length raise ConsensusConflictError.
        """
        if self.network is None:
            return False
        with self._cycle_lock:
            self._set_state(NodeState.SYNCING)
            try:
                return self._sync_with_peers()
            except ConsensusConflictError as exc:
                self.fatal_error = exc
                logger.error("%s %s", self.label, exc)
                raise
            finally:
                self._set_state(NodeState.IDLE)

    def _sync_with_peers(self) -> bool:
        local = self.ledger.chain
        candidates: Dict[str, List[Block]] = {}
        for peer_id in self.network.peers_of(self.node_id):
            try:
                blocks = [Block.from_dict(data) for data in self.network.fetch_chain(peer_id)]
            except (KeyError, ValidationError) as exc:
                logger.warning("%s Could not read chain from %s: %s", self.label, peer_id, exc)
                continue
            if not self.ledger.validate_chain(blocks, self.validator.validate_recorded):
                logger.warning("%s Ignoring invalid chain from %s", self.label, peer_id)
                continue
            candidates.setdefault(blocks[-1].hash, blocks)

        if not candidates:
            return False
        best_length = max(len(blocks) for blocks in candidates.values())
        if best_length < len(local):
            return False
        best = [blocks for blocks in candidates.values() if len(blocks) == best_length]
        if best_length == len(local):
            if any(blocks[-1].hash != local[-1].hash for blocks in best):
                raise ConsensusConflictError(
                    f"Peer chain of height {best_length} diverges from the local chain; operator must resolve"
                )
            return False
        if len(best) > 1:
            raise ConsensusConflictError(
                f"{len(best)} competing valid chains of height {best_length}; operator must resolve"
            )

        self.ledger.replace_chain(best[0])
        logger.info("%s Adopted peer chain of height %d (was %d)", self.label, best_length, len(local))
        return True

    # —— 调度 / scheduling ——

    def start(self) -> None:
        """定时出块与同步，仅限权威节点 / Scheduled cycles run only on the authority node.

        A replica is driven by explicit ``sync()`` calls instead.
        """
        if not self.is_authority:
            raise NotAuthorityError(f"Node {self.node_id} is a replica; scheduled cycles need authority status")
        self._drain_task.start()
        if self.network is not None:
            self._sync_task.start()
        logger.info("%s Started", self.label)

    def stop(self) -> None:
        """Wait for in-flight cycles; no half-built block is ever appended."""
        if self._drain_task is not None:
            self._drain_task.stop()
        if self._sync_task is not None:
            self._sync_task.stop()
        logger.info("%s Stopped", self.label)
