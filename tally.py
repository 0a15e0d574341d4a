"""Homomorphic tally engine: accumulate, freeze, threshold-decrypt."""

from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Iterable, List, Set, Tuple

from data_models import Ballot, ElectionInfo, PartialDecryption, PerformanceStats
from errors import ThresholdInsufficientError, ValidationError
from paillier import PaillierPublicKey, add_encrypted, check_ciphertext
from threshold import combine_partial_decryptions
from vote_encoding import decode_tally, ensure_capacity

logger = logging.getLogger(__name__)


class EncryptedTally:
    """加密计票累加器 / One ciphertext per candidate (or one packed ciphertext).

    Only ever updated by homomorphic multiplication; individual ballots are
    never decrypted.
    """

    def __init__(self, election_id: str, public_key: PaillierPublicKey, slots: int) -> None:
        if slots < 1:
            raise ValidationError("An encrypted tally needs at least one slot")
        self.election_id = election_id
        self.public_key = public_key
        # 1 = (1+n)^0 * 1^n, the neutral encryption of zero
        self._ciphertexts: List[int] = [1] * slots
        self.ballot_count = 0
        self.closed = False

    @property
    def slots(self) -> int:
        return len(self._ciphertexts)

    @property
    def ciphertexts(self) -> Tuple[int, ...]:
        return tuple(self._ciphertexts)

    def add(self, candidate_vector: Iterable[int]) -> None:
        if self.closed:
            raise ValidationError(f"Tally for election {self.election_id} is closed")
        vector = list(candidate_vector)
        if len(vector) != self.slots:
            raise ValidationError(f"Candidate vector has {len(vector)} entries, tally expects {self.slots}")
        updated = [add_encrypted(acc, c, self.public_key) for acc, c in zip(self._ciphertexts, vector)]
        self._ciphertexts = updated
        self.ballot_count += 1

    def close(self) -> None:
        self.closed = True

    def to_dict(self) -> dict:
        return {
            "electionId": self.election_id,
            "ciphertexts": list(self._ciphertexts),
            "ballotCount": self.ballot_count,
            "closed": self.closed,
        }


class TallyEngine:
    """计票引擎 / Sums finalized ballots and combines threshold partial decryptions."""

    def __init__(
        self,
        election: ElectionInfo,
        public_key: PaillierPublicKey,
        share_count: int,
        threshold: int,
        packed: bool = False,
    ) -> None:
        if not 1 <= threshold <= share_count:
            raise ValidationError(f"Threshold {threshold} outside 1..{share_count}")
        self.election = election
        self.public_key = public_key
        self.share_count = share_count
        self.threshold = threshold
        self.packed = packed
        if packed:
            ensure_capacity(election.candidate_count, election.max_voters, public_key.n)
        slots = 1 if packed else election.candidate_count
        self.tally = EncryptedTally(election.election_id, public_key, slots)
        self.performance_stats: List[PerformanceStats] = []
        self._counted: Set[str] = set()
        self._partials: Dict[int, PartialDecryption] = {}
        self._lock = threading.Lock()

    # —— 累加 / accumulation ——

    def accumulate(self, ballots: Iterable[Ballot]) -> int:
        """Add ballots not seen before; returns how many were added."""
        start_time = time.time()
        added = 0
        with self._lock:
            for ballot in ballots:
                if ballot.election_id != self.election.election_id:
                    continue
                ballot_hash = ballot.ballot_hash()
                if ballot_hash in self._counted:
                    continue
                self.tally.add(ballot.candidate_vector)
                self._counted.add(ballot_hash)
                added += 1
        if added:
            self.add_performance_stat(
                "Homomorphic accumulation",
                time.time() - start_time,
                {"ballots added": added, "modular multiplications": added * self.tally.slots},
            )
        return added

    def accumulate_blocks(self, blocks: Iterable) -> int:
        return self.accumulate(ballot for block in blocks for ballot in block.ballots)

    def close(self) -> EncryptedTally:
        """冻结聚合密文 / Freeze the aggregate; partial decryptions target it."""
        with self._lock:
            if not self.tally.closed:
                self.tally.close()
                logger.info(
                    "Closed tally for election %s with %d ballots", self.election.election_id, self.tally.ballot_count
                )
            return self.tally

    # —— 门限解密 / threshold decryption ——

    def submit_partial_decryption(self, authority_id: str, partial: PartialDecryption) -> None:
        if partial.authority_id != authority_id:
            raise ValidationError("Partial decryption was produced for a different authority")
        with self._lock:
            if not self.tally.closed:
                raise ValidationError("Tally must be closed before partial decryptions are accepted")
            if partial.n != self.public_key.n:
                raise ValidationError("Partial decryption uses a different Paillier modulus")
            if not 1 <= partial.share_index <= self.share_count:
                raise ValidationError(f"Unknown share index {partial.share_index}")
            if len(partial.values) != self.tally.slots:
                raise ValidationError(
                    f"Partial decryption has {len(partial.values)} values, tally has {self.tally.slots} slots"
                )
            for value in partial.values:
                check_ciphertext(value, self.public_key)
            if partial.share_index in self._partials:
                logger.warning(
                    "[Tally %s] Ignoring duplicate partial decryption for share %d from %s",
                    self.election.election_id,
                    partial.share_index,
                    authority_id,
                )
                return
            self._partials[partial.share_index] = partial
            logger.info(
                "[Tally %s] Accepted partial decryption %d/%d from %s",
                self.election.election_id,
                len(self._partials),
                self.threshold,
                authority_id,
            )

    @property
    def partial_count(self) -> int:
        with self._lock:
            return len(self._partials)

    def final_tally(self) -> List[int]:
        """Per-candidate counts; ThresholdInsufficientError below t partials."""
        with self._lock:
            partials = dict(self._partials)
        if len(partials) < self.threshold:
            raise ThresholdInsufficientError(
                f"Election {self.election.election_id}: {len(partials)} of {self.threshold} partial decryptions"
            )

        start_time = time.time()
        plaintexts = []
        for slot in range(self.tally.slots):
            plaintexts.append(
                combine_partial_decryptions(
                    {idx: p.values[slot] for idx, p in partials.items()},
                    self.public_key,
                    self.threshold,
                    self.share_count,
                )
            )
        if self.packed:
            counts = decode_tally(plaintexts[0], self.election.candidate_count, self.election.max_voters)
        else:
            counts = plaintexts
        self.add_performance_stat(
            "Threshold combination",
            time.time() - start_time,
            {"partial decryptions used": self.threshold, "combined ciphertexts": self.tally.slots},
        )

        if sum(counts) != self.tally.ballot_count:
            logger.warning(
                "[Tally %s] Decrypted total %d differs from ballot count %d",
                self.election.election_id,
                sum(counts),
                self.tally.ballot_count,
            )
        return counts

    # —— 性能统计 / performance report ——

    def add_performance_stat(self, phase_name: str, duration: float, operations: Dict[str, int] | None = None) -> None:
        self.performance_stats.append(PerformanceStats(phase_name, duration, operations or {}))

    def print_performance_report(self) -> None:
        print("\n" + "=" * 80)
        print("***  TALLY PERFORMANCE REPORT  ***".center(80))
        print("=" * 80 + "\n")

        total_time = sum(stat.duration for stat in self.performance_stats)
        for idx, stat in enumerate(self.performance_stats, 1):
            percentage = (stat.duration / total_time * 100) if total_time > 0 else 0
            print(f"┌─ Phase {idx}: {stat.phase_name}")
            print(f"│  ⏱  Duration:    {stat.duration*1000:.4f} ms  ({percentage:.1f}% of total)")
            if stat.operations:
                print("│  📊 Operations:")
                for op_name, count in stat.operations.items():
                    print(f"│     • {op_name}: {count:,}")
            print(f"└{'─'*78}\n")

        print("=" * 80)
        print(f"🕐 TOTAL TALLY TIME: {total_time*1000:.4f} ms ({total_time:.6f} seconds)")
        print("=" * 80 + "\n")
