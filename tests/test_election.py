import dataclasses

import pytest

from conftest import cast
from errors import DuplicateAuthorizationError, NotAuthorityError, ThresholdInsufficientError, ValidationError
from paillier import encrypt
from threshold import partial_decrypt_all
from voter import VoterClient


def _decrypt(service, shares, election_id="election-1"):
    tally = service.tally_engine(election_id).tally
    for share in shares:
        authority_id = f"trustee-{share.index}"
        service.submit_partial_decryption(authority_id, partial_decrypt_all(authority_id, tally.ciphertexts, share))
    return service.get_final_tally(election_id)


def test_end_to_end_election(election_setup, clock):
    service, _, shares, voters = election_setup
    choices = [0, 2, 1, 2, 2]
    for voter, choice in zip(voters, choices):
        result = service.submit_ballot(cast(service, voter, choice))
        assert result.accepted, result.reason
        clock.advance(1.0)
        service.process_pending()

    blocks = service.get_finalized_ballots("election-1")
    assert len(blocks) == 1 and len(blocks[0].ballots) == 3

    # 剩余 2 张在等待超时后强制释放
    clock.advance(service.config.max_wait + 1)
    service.process_pending()
    blocks = service.get_finalized_ballots("election-1")
    assert [len(b.ballots) for b in blocks] == [3, 2]
    assert blocks[1].previous_hash == blocks[0].hash

    tally = service.close_election("election-1")
    assert len(service.get_finalized_ballots("election-1")) == 2
    assert tally.ballot_count == 5

    assert _decrypt(service, shares[:2]) == [1, 1, 3]


def test_tally_needs_threshold_partials(election_setup):
    service, _, shares, voters = election_setup
    service.submit_ballot(cast(service, voters[0], 1))
    service.close_election("election-1")
    with pytest.raises(ThresholdInsufficientError):
        _decrypt(service, shares[:1])
    assert _decrypt(service, shares[1:2]) == [0, 1, 0]


def test_second_authorization_refused(election_setup):
    service, _, _, voters = election_setup
    cast(service, voters[0], 0)
    with pytest.raises(DuplicateAuthorizationError):
        cast(service, voters[0], 1)


def test_replayed_ballot_is_a_double_vote(election_setup, clock):
    service, _, _, voters = election_setup
    ballot = cast(service, voters[0], 0)
    assert service.submit_ballot(ballot).accepted
    assert service.submit_ballot(ballot).accepted  # not yet on the ledger
    service.mixnet.flush()
    report = service.node.drain()
    assert report.accepted == 1
    assert [r.error_type for r in report.rejected] == ["DuplicateVoteError"]

    replay = service.submit_ballot(ballot)
    assert not replay.accepted
    assert "Key image" in replay.reason


def test_tampered_ballots_rejected(election_setup, clock):
    service, public_key, _, voters = election_setup
    ballot = cast(service, voters[0], 0)

    swapped = list(ballot.candidate_vector)
    swapped[0], swapped[1] = swapped[1], swapped[0]
    assert not service.submit_ballot(dataclasses.replace(ballot, candidate_vector=swapped)).accepted
    assert not service.submit_ballot(
        dataclasses.replace(ballot, blind_signature_proof=ballot.blind_signature_proof + 1)
    ).accepted
    assert not service.submit_ballot(dataclasses.replace(ballot, election_id="unknown")).accepted
    assert not service.submit_ballot(None).accepted

    clock.advance(service.config.ballot_max_age + 1)
    stale = service.submit_ballot(ballot)
    assert not stale.accepted and "stale" in stale.reason


def test_ring_outside_registry_rejected(election_setup, clock):
    service, _, _, voters = election_setup
    outsider = VoterClient("outsider", clock=clock)
    others = [pk for pk in service.registry.anonymity_set("election-1") if pk != voters[0].public_key]
    ring = others[:2] + [outsider.public_key, voters[0].public_key]
    ballot = voters[0].cast_vote(
        service.election("election-1"),
        0,
        service.public_key("election-1"),
        service,
        service.authority_public_key,
        ring,
    )
    result = service.submit_ballot(ballot)
    assert not result.accepted
    assert "registered voter set" in result.reason


def test_closed_election_refuses_ballots(election_setup):
    service, _, _, voters = election_setup
    ballot = cast(service, voters[0], 0)
    service.close_election("election-1")
    assert not service.submit_ballot(ballot).accepted
    with pytest.raises(ValidationError):
        cast(service, voters[1], 0)


def test_packed_election(make_service, clock):
    service = make_service()
    _, shares = service.setup_election("packed", candidate_count=3, max_voters=12, packed=True)
    voters = [VoterClient(f"p{i}", clock=clock) for i in range(4)]
    for voter in voters:
        service.register_voter("packed", voter.voter_id, voter.public_key)
    for voter, choice in zip(voters, [2, 2, 0, 2]):
        ballot = voter.cast_vote(
            service.election("packed"),
            choice,
            service.public_key("packed"),
            service,
            service.authority_public_key,
            service.registry.anonymity_set("packed"),
            packed=True,
        )
        assert service.submit_ballot(ballot).accepted
    service.close_election("packed")
    assert _decrypt(service, shares[:2], "packed") == [1, 0, 3]


def test_replica_follows_authority(election_setup, clock):
    service, _, _, voters = election_setup
    replica = service.add_replica("replica-1")
    for voter, choice in zip(voters[:3], [0, 1, 2]):
        service.submit_ballot(cast(service, voter, choice))
    service.node.drain()
    assert replica.sync()
    assert replica.ledger.chain[-1].hash == service.ledger.chain[-1].hash
    with pytest.raises(NotAuthorityError):
        replica.drain()


def test_replica_service_cannot_start(make_service):
    authority = make_service()
    keys = {"authority-1": authority.node.signing_public_key}
    service = make_service(authority_keys=keys, is_authority=False, node_id="replica-9")
    with pytest.raises(NotAuthorityError):
        service.start()


def test_replica_service_needs_authority_keys(make_service):
    with pytest.raises(ValidationError):
        make_service(is_authority=False, node_id="replica-9")


def test_case_changed_key_image_replay_rejected(election_setup, clock):
    service, _, shares, voters = election_setup
    ballot = cast(service, voters[0], 0)
    assert service.submit_ballot(ballot).accepted
    service.mixnet.flush()
    assert service.node.drain().accepted == 1

    signature = ballot.ring_signature
    replay = dataclasses.replace(
        ballot, ring_signature=dataclasses.replace(signature, key_image=signature.key_image.upper())
    )
    assert replay.ring_signature.key_image != signature.key_image
    result = service.submit_ballot(replay)
    assert not result.accepted

    service.close_election("election-1")
    assert _decrypt(service, shares[:2]) == [1, 0, 0]


class InflatingVoter(VoterClient):
    """Puts 5 votes in slot 0 and reuses the proof of an honest ballot."""

    def encrypt_choice(self, election, candidate_index, public_key, packed=False):
        vector, proof = super().encrypt_choice(election, 0, public_key, packed)
        vector[0] = encrypt(5, public_key)
        return vector, proof


def test_inflated_ballot_rejected(election_setup, clock):
    service, _, _, voters = election_setup
    cheat = InflatingVoter("voter-1", private_key=voters[0].private_key, clock=clock)
    result = service.submit_ballot(cast(service, cheat, 0))
    assert not result.accepted
    assert "validity proof" in result.reason


def test_ballot_without_validity_proof_rejected(election_setup):
    service, _, _, voters = election_setup
    ballot = cast(service, voters[0], 1)
    result = service.submit_ballot(dataclasses.replace(ballot, validity_proof=None))
    assert not result.accepted
    assert "validity proof" in result.reason
