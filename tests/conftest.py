import pytest

import ring_signature
from blind_signature import generate_authority_keys
from clock import ManualClock
from config import PipelineConfig
from data_models import Ballot, RingSignature, sha256_hex
from election import ElectionService
from paillier import generate_keypair
from voter import VoterClient


@pytest.fixture(scope="session")
def paillier_keys():
    return generate_keypair(512)


@pytest.fixture(scope="session")
def blind_keys():
    return generate_authority_keys(1024)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture(scope="session")
def ring_keys():
    return [ring_signature.generate_keypair() for _ in range(4)]


@pytest.fixture
def fast_config():
    return PipelineConfig(
        node_id="authority-1",
        paillier_bits=256,
        rsa_bits=1024,
        share_count=3,
        share_threshold=2,
        min_batch_size=3,
    )


@pytest.fixture
def make_service(blind_keys, clock, fast_config):
    def _make(authority_keys=None, **overrides):
        config = fast_config
        if overrides:
            values = dict(vars(fast_config))
            values.update(overrides)
            config = PipelineConfig(**values)
        return ElectionService(config=config, clock=clock, blind_keys=blind_keys, authority_keys=authority_keys)

    return _make


@pytest.fixture
def election_setup(make_service, clock):
    """3 candidates, 5 registered voters."""
    service = make_service()
    public_key, shares = service.setup_election("election-1", candidate_count=3, max_voters=5)
    voters = [VoterClient(f"voter-{i}", clock=clock) for i in range(1, 6)]
    for voter in voters:
        service.register_voter("election-1", voter.voter_id, voter.public_key)
    return service, public_key, shares, voters


def cast(service, voter, candidate, election_id="election-1"):
    return voter.cast_vote(
        service.election(election_id),
        candidate,
        service.public_key(election_id),
        service,
        service.authority_public_key,
        service.registry.anonymity_set(election_id),
    )


def fake_ballot(election_id="election-1", key_image=None, submitted_at=0.0, vector=(1, 1)):
    """Structurally complete ballot without real cryptography, for ledger-level tests."""
    key_image = key_image or sha256_hex(repr((election_id, submitted_at, vector)).encode())
    signature = RingSignature(challenges=(1, 2), responses=(3, 4), key_image=key_image, public_keys=("aa", "bb"))
    return Ballot(
        election_id=election_id,
        candidate_vector=vector,
        voter_commitment="00" * 32,
        blind_signature_proof=7,
        ring_signature=signature,
        submitted_at=submitted_at,
    )


class AcceptAllValidator:
    def validate(self, ballot, check_freshness=True):
        pass

    def validate_recorded(self, ballot):
        pass
