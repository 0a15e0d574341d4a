"""Voter-side casting workflow."""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import blind_signature
import ring_signature
import vote_proof
from blind_signature import AuthorityPublicKey
from clock import Clock, SystemClock
from data_models import Ballot, BallotProof, ElectionInfo, ballot_commitment, ballot_signing_payload
from paillier import PaillierPublicKey, encrypt_with_nonce
from vote_encoding import candidate_indicator_vector, encode_vote

logger = logging.getLogger(__name__)


class VoterClient:
    """选民客户端 / Holds the voter's ring key and builds ballots locally.

    The blinding factors never leave this object; the authority only sees the
    blinded commitment.
    """

    def __init__(self, voter_id: str, private_key: int | None = None, clock: Clock | None = None) -> None:
        self.voter_id = voter_id
        if private_key is None:
            private_key, _ = ring_signature.generate_keypair()
        self.private_key = private_key
        self.public_key = ring_signature.derive_public_key(private_key)
        self.clock = clock or SystemClock()

    @property
    def key_image(self) -> str:
        return ring_signature.compute_key_image(self.private_key, self.public_key)

    def encrypt_choice(
        self,
        election: ElectionInfo,
        candidate_index: int,
        public_key: PaillierPublicKey,
        packed: bool = False,
    ) -> Tuple[List[int], BallotProof]:
        """加密选择并附有效性证明 / Encrypted vector plus its validity proof."""
        if packed:
            plaintexts = [encode_vote(candidate_index, election.candidate_count, election.max_voters)]
        else:
            plaintexts = candidate_indicator_vector(candidate_index, election.candidate_count)
        encrypted = [encrypt_with_nonce(m, public_key) for m in plaintexts]
        vector = [c for c, _ in encrypted]
        proof = vote_proof.prove_ballot(
            election, vector, plaintexts, [r for _, r in encrypted], public_key, packed=packed
        )
        return vector, proof

    def cast_vote(
        self,
        election: ElectionInfo,
        candidate_index: int,
        public_key: PaillierPublicKey,
        authorizer,
        authority_public_key: AuthorityPublicKey,
        anonymity_set: Sequence[str],
        packed: bool = False,
    ) -> Ballot:
        """加密、盲签授权、环签名 / Encrypt, get blind authorization, ring-sign.

        ``authorizer`` is anything with
        ``request_authorization(election_id, voter_id, blinded_hash)``.
        """
        vector, validity_proof = self.encrypt_choice(election, candidate_index, public_key, packed)
        commitment = ballot_commitment(election.election_id, vector)

        session = blind_signature.start_session(commitment, authority_public_key, self.clock)
        blind_sig = authorizer.request_authorization(election.election_id, self.voter_id, session.blinded_hash)
        proof = blind_signature.finish_session(session, blind_sig, commitment, authority_public_key, self.clock)

        payload = ballot_signing_payload(election.election_id, vector, commitment, proof, validity_proof)
        signature = ring_signature.sign(payload, self.private_key, anonymity_set)
        logger.debug("Voter %s built ballot for election %s", self.voter_id, election.election_id)
        return Ballot(
            election_id=election.election_id,
            candidate_vector=vector,
            voter_commitment=commitment,
            blind_signature_proof=proof,
            ring_signature=signature,
            submitted_at=self.clock.now(),
            validity_proof=validity_proof,
        )
