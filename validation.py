"""Per-ballot validation shared by submission, block production and chain sync."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Tuple

import blind_signature
import ring_signature
import vote_proof
from blind_signature import AuthorityPublicKey
from clock import Clock
from constants import BALLOT_MAX_AGE, BALLOT_MAX_CLOCK_SKEW
from data_models import Ballot, ballot_commitment
from errors import ValidationError
from paillier import PaillierPublicKey, check_ciphertext

logger = logging.getLogger(__name__)


class BallotValidator:
    """选票校验器 / Structural and cryptographic checks for one ballot.

    Key-image uniqueness is not checked here; it depends on ledger state and
    is enforced by the node that owns the ledger.
    """

    def __init__(
        self,
        directory,
        registry,
        authority_public_key: AuthorityPublicKey,
        clock: Clock,
        max_age: float = BALLOT_MAX_AGE,
        max_clock_skew: float = BALLOT_MAX_CLOCK_SKEW,
    ) -> None:
        self.directory = directory
        self.registry = registry
        self.authority_public_key = authority_public_key
        self.clock = clock
        self.max_age = max_age
        self.max_clock_skew = max_clock_skew
        self._elections: Dict[str, Tuple[PaillierPublicKey, int, bool]] = {}
        self._lock = threading.Lock()

    def register_election(
        self, election_id: str, public_key: PaillierPublicKey, slots: int, packed: bool = False
    ) -> None:
        """登记选举的Paillier公钥、密文个数与编码方式 / Expected key, vector length and layout."""
        with self._lock:
            self._elections[election_id] = (public_key, slots, packed)

    def election_key(self, election_id: str) -> Tuple[PaillierPublicKey, int, bool]:
        with self._lock:
            try:
                return self._elections[election_id]
            except KeyError as exc:
                raise ValidationError(f"No encryption key registered for election {election_id}") from exc

    def validate(self, ballot: Ballot, check_freshness: bool = True) -> None:
        if not isinstance(ballot, Ballot):
            raise ValidationError("Not a ballot")
        election = self.directory.get(ballot.election_id)
        public_key, slots, packed = self.election_key(ballot.election_id)

        if len(ballot.candidate_vector) != slots:
            raise ValidationError(f"Ballot carries {len(ballot.candidate_vector)} ciphertexts, expected {slots}")
        for ciphertext in ballot.candidate_vector:
            check_ciphertext(ciphertext, public_key)
        if ballot.validity_proof is None:
            raise ValidationError("Ballot carries no validity proof")
        if not vote_proof.verify_ballot(election, ballot.candidate_vector, ballot.validity_proof, public_key, packed):
            raise ValidationError("Ballot validity proof is invalid")

        if ballot.voter_commitment != ballot_commitment(ballot.election_id, ballot.candidate_vector):
            raise ValidationError("Voter commitment does not match the ballot content")
        if not blind_signature.verify(ballot.voter_commitment, ballot.blind_signature_proof, self.authority_public_key):
            raise ValidationError("Blind signature proof is invalid")

        registered = set(self.registry.anonymity_set(ballot.election_id))
        if not set(ballot.ring_signature.public_keys) <= registered:
            raise ValidationError("Ring contains keys outside the registered voter set")
        if not ring_signature.verify(ballot.signing_payload(), ballot.ring_signature):
            raise ValidationError("Ring signature is invalid")

        if check_freshness:
            self.check_freshness(ballot)

    def check_freshness(self, ballot: Ballot) -> None:
        now = self.clock.now()
        if ballot.submitted_at > now + self.max_clock_skew:
            raise ValidationError("Ballot timestamp lies in the future")
        if now - ballot.submitted_at > self.max_age:
            raise ValidationError("Ballot is stale")

    def validate_recorded(self, ballot: Ballot) -> None:
        """已上链选票：不检查时效 / Ballots already on a chain are not re-aged."""
        self.validate(ballot, check_freshness=False)
