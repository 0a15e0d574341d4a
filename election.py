"""ElectionService: the interface exposed to the surrounding application."""

from __future__ import annotations

import logging
import random
import threading
from typing import Dict, List, Tuple

from authority import DrainReport, LedgerNode
from blind_signature import AuthorityPrivateKey, AuthorityPublicKey, BlindSignatureAuthority, generate_authority_keys
from clock import Clock, SystemClock
from config import PipelineConfig
from data_models import Ballot, ElectionInfo, KeyShare, PartialDecryption, SubmissionResult
from errors import DuplicateVoteError, NotAuthorityError, ValidationError
from ledger import Block, Ledger
from mixnet import MixnetBatcher
from network_simulator import NetworkSimulator
from paillier import PaillierPublicKey, generate_keypair
from registry import InMemoryElectionDirectory, InMemoryVoterRegistry
from tally import EncryptedTally, TallyEngine
from threshold import generate_key_shares
from validation import BallotValidator

logger = logging.getLogger(__name__)


class ElectionService:
    """选举服务 / Wires authorizer, mixnet, ledger node and tally engines together.

    No global state: every collaborator is passed in or created per service.
    A replica service (``is_authority=False``) must be given ``authority_keys``,
    the Ed25519 public keys of the nodes allowed to produce blocks.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        clock: Clock | None = None,
        registry=None,
        directory=None,
        network: NetworkSimulator | None = None,
        blind_keys: Tuple[AuthorityPrivateKey, AuthorityPublicKey] | None = None,
        rng: random.Random | None = None,
        authority_keys: Dict[str, bytes] | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.clock = clock or SystemClock()
        self.registry = registry if registry is not None else InMemoryVoterRegistry()
        self.directory = directory if directory is not None else InMemoryElectionDirectory()
        self.network = network if network is not None else NetworkSimulator()

        private_key, public_key = blind_keys or generate_authority_keys(self.config.rsa_bits)
        self.authorizer = BlindSignatureAuthority(private_key, self.registry)
        self.validator = BallotValidator(
            self.directory, self.registry, public_key, self.clock, max_age=self.config.ballot_max_age
        )
        self.ledger = Ledger(authority_keys=authority_keys)
        self.node = LedgerNode(
            self.config.node_id,
            self.ledger,
            self.validator,
            network=self.network,
            is_authority=self.config.is_authority,
            clock=self.clock,
            block_interval=self.config.block_interval,
            sync_interval=self.config.sync_interval,
        )
        self.mixnet = MixnetBatcher(
            on_release=self.node.enqueue,
            min_batch_size=self.config.min_batch_size,
            max_wait=self.config.max_wait,
            clock=self.clock,
            rng=rng,
            tick_interval=self.config.mixnet_tick_interval,
        )
        self._tallies: Dict[str, TallyEngine] = {}
        self._lock = threading.Lock()

    @property
    def authority_public_key(self) -> AuthorityPublicKey:
        return self.authorizer.public_key

    # —— 选举准备 / setup ——

    def setup_election(
        self,
        election_id: str,
        candidate_count: int,
        max_voters: int,
        share_count: int | None = None,
        t: int | None = None,
        packed: bool = False,
    ) -> Tuple[PaillierPublicKey, List[KeyShare]]:
        """生成选举密钥并拆分 / Create the election key; only the shares survive."""
        share_count = share_count or self.config.share_count
        t = t or self.config.share_threshold
        election = ElectionInfo(election_id, candidate_count, max_voters)
        public_key, private_key = generate_keypair(self.config.paillier_bits, self.config.insecure_test_mode)
        shares = generate_key_shares(private_key, share_count, t)
        engine = TallyEngine(election, public_key, share_count, t, packed=packed)

        self.directory.add(election)
        with self._lock:
            self._tallies[election_id] = engine
        self.validator.register_election(election_id, public_key, engine.tally.slots, packed=packed)
        logger.info(
            "%s Election %s ready: %d candidates, %d-of-%d decryption",
            self.node.label,
            election_id,
            candidate_count,
            t,
            share_count,
        )
        return public_key, shares

    def register_voter(self, election_id: str, voter_id: str, public_key: str) -> None:
        self.directory.get(election_id)
        self.registry.register(election_id, voter_id, public_key)

    def election(self, election_id: str) -> ElectionInfo:
        return self.directory.get(election_id)

    def public_key(self, election_id: str) -> PaillierPublicKey:
        return self.tally_engine(election_id).public_key

    def tally_engine(self, election_id: str) -> TallyEngine:
        with self._lock:
            try:
                return self._tallies[election_id]
            except KeyError as exc:
                raise ValidationError(f"Unknown election {election_id}") from exc

    # —— 投票 / voting ——

    def request_authorization(self, election_id: str, voter_id: str, blinded_hash: int) -> int:
        if self.tally_engine(election_id).tally.closed:
            raise ValidationError(f"Election {election_id} is closed")
        return self.authorizer.request_authorization(election_id, voter_id, blinded_hash)

    def submit_ballot(self, ballot: Ballot) -> SubmissionResult:
        """提前校验后送入混合网络 / Early validation, then into the mixnet."""
        if not isinstance(ballot, Ballot):
            return SubmissionResult(False, "Not a ballot")
        try:
            if self.tally_engine(ballot.election_id).tally.closed:
                raise ValidationError(f"Election {ballot.election_id} is closed")
            self.validator.validate(ballot)
            if self.ledger.is_key_image_used(ballot.election_id, ballot.key_image):
                raise DuplicateVoteError("Key image already recorded for this election")
        except (ValidationError, DuplicateVoteError) as exc:
            logger.warning("%s Ballot refused at submission: %s", self.node.label, exc)
            return SubmissionResult(False, str(exc))
        self.mixnet.add_entry(ballot)
        return SubmissionResult(True)

    def process_pending(self) -> DrainReport:
        """One manual step: mixnet tick, then a drain cycle."""
        self.mixnet.tick()
        return self.node.drain()

    def get_finalized_ballots(self, election_id: str) -> List[Block]:
        return self.ledger.get_blocks(election_id)

    # —— 计票 / tally ——

    def close_election(self, election_id: str) -> EncryptedTally:
        engine = self.tally_engine(election_id)
        self.mixnet.flush()
        if self.node.is_authority:
            self.node.drain()
        engine.accumulate_blocks(self.ledger.get_blocks(election_id))
        return engine.close()

    def submit_partial_decryption(
        self, authority_id: str, partial: PartialDecryption, election_id: str | None = None
    ) -> None:
        """按模数 n 定位选举，除非显式给出 / Route by modulus unless ``election_id`` is given."""
        if election_id is not None:
            self.tally_engine(election_id).submit_partial_decryption(authority_id, partial)
            return
        with self._lock:
            engines = [e for e in self._tallies.values() if e.public_key.n == partial.n]
        if not engines:
            raise ValidationError("Partial decryption does not match any election key")
        if len(engines) > 1:
            raise ValidationError("Several elections share this modulus; pass election_id")
        engines[0].submit_partial_decryption(authority_id, partial)

    def get_final_tally(self, election_id: str) -> List[int]:
        return self.tally_engine(election_id).final_tally()

    # —— 节点 / nodes ——

    def add_replica(self, node_id: str) -> LedgerNode:
        """只读副本，共享校验器 / Read-only replica syncing from this network."""
        if node_id == self.node.node_id:
            raise ValidationError("Replica id collides with the authority node")
        return LedgerNode(
            node_id,
            Ledger(authority_keys=dict(self.ledger.authority_keys)),
            self.validator,
            network=self.network,
            is_authority=False,
            clock=self.clock,
            sync_interval=self.config.sync_interval,
        )

    def start(self) -> None:
        if not self.node.is_authority:
            raise NotAuthorityError("Only the authority service runs the mixnet and drain schedule")
        self.mixnet.start()
        self.node.start()

    def stop(self) -> None:
        self.mixnet.stop()
        self.node.stop()
