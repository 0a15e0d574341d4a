import time

import pytest

from authority import LedgerNode, NodeState
from conftest import AcceptAllValidator, fake_ballot
from crypto_manager import CryptoManager
from errors import ConsensusConflictError, NotAuthorityError, ValidationError
from ledger import Block, Ledger
from network_simulator import NetworkSimulator


class RejectingValidator(AcceptAllValidator):
    def __init__(self, bad_images):
        self.bad_images = set(bad_images)

    def validate(self, ballot, check_freshness=True):
        if ballot.key_image in self.bad_images:
            raise ValidationError("bad ballot")


def _authority(node_id, network, clock, validator=None):
    key, public_bytes = CryptoManager.generate_signature_keypair()
    ledger = Ledger(authority_keys={node_id: public_bytes})
    return LedgerNode(
        node_id, ledger, validator or AcceptAllValidator(), network, is_authority=True, signing_key=key, clock=clock
    )


def _replica(node_id, network, authorities, clock):
    keys = {a.node_id: a.signing_public_key for a in authorities}
    return LedgerNode(node_id, Ledger(authority_keys=keys), AcceptAllValidator(), network, clock=clock)


def test_drain_builds_one_block_per_cycle(clock):
    node = _authority("authority-1", None, clock)
    node.enqueue([fake_ballot(key_image=f"k{i}") for i in range(3)])
    report = node.drain()
    assert report.accepted == 3
    assert report.block.index == 1
    assert node.ledger.height == 2
    assert node.pending_count == 0
    assert node.drain().block is None
    assert node.ledger.height == 2
    assert node.state is NodeState.IDLE


def test_drain_rejects_invalid_and_duplicate_ballots(clock):
    node = _authority("authority-1", None, clock, validator=RejectingValidator({"bad"}))
    node.enqueue([fake_ballot(key_image="old")])
    node.drain()

    node.enqueue(
        [
            fake_ballot(key_image="bad"),
            fake_ballot(key_image="old", submitted_at=5.0),
            fake_ballot(key_image="new", submitted_at=6.0),
            fake_ballot(key_image="new", submitted_at=7.0),
        ]
    )
    report = node.drain()
    assert report.accepted == 1
    assert [r.error_type for r in report.rejected] == ["ValidationError", "DuplicateVoteError", "DuplicateVoteError"]
    assert [b.key_image for b in report.block.ballots] == ["new"]
    # rejected ballots are not requeued
    assert node.pending_count == 0


def test_replica_never_produces_blocks(clock):
    network = NetworkSimulator()
    authority = _authority("authority-1", network, clock)
    replica = _replica("replica-1", network, [authority], clock)
    with pytest.raises(NotAuthorityError):
        replica.drain()


def test_replica_adopts_longer_valid_chain(clock):
    network = NetworkSimulator()
    authority = _authority("authority-1", network, clock)
    replica = _replica("replica-1", network, [authority], clock)
    for i in range(2):
        authority.enqueue([fake_ballot(key_image=f"k{i}")])
        authority.drain()

    assert replica.sync()
    assert [b.hash for b in replica.ledger.chain] == [b.hash for b in authority.ledger.chain]
    assert replica.ledger.is_key_image_used("election-1", "k1")
    # nothing new: keep the local chain
    assert not replica.sync()
    # the authority never adopts a shorter chain
    assert not authority.sync()


def test_equal_length_fork_raises_conflict(clock):
    network = NetworkSimulator()
    first = _authority("authority-1", network, clock)
    second = _authority("authority-2", network, clock)
    replica = _replica("replica-1", network, [first, second], clock)
    first.enqueue([fake_ballot(key_image="a")])
    first.drain()
    second.enqueue([fake_ballot(key_image="b")])
    second.drain()

    with pytest.raises(ConsensusConflictError):
        replica.sync()
    assert isinstance(replica.fatal_error, ConsensusConflictError)
    assert replica.ledger.height == 1


def test_local_chain_fork_of_equal_length_raises_conflict(clock):
    network = NetworkSimulator()
    first = _authority("authority-1", network, clock)
    second = _authority("authority-2", network, clock)
    first.ledger.authority_keys["authority-2"] = second.signing_public_key
    first.enqueue([fake_ballot(key_image="a")])
    first.drain()
    second.enqueue([fake_ballot(key_image="b")])
    second.drain()

    with pytest.raises(ConsensusConflictError):
        first.sync()
    assert first.ledger.chain[-1].ballots[0].key_image == "a"


def test_invalid_peer_chain_is_ignored(clock):
    network = NetworkSimulator()
    authority = _authority("authority-1", network, clock)
    replica = _replica("replica-1", network, [authority], clock)
    authority.enqueue([fake_ballot(key_image="k")])
    authority.drain()

    def forged_chain():
        chain = authority.ledger.to_dicts()
        chain[1]["ballots"][0]["submittedAt"] = 99.0
        return chain + [dict(chain[1], index=2, previousHash=chain[1]["hash"])]

    network.unregister_node("authority-1")
    network.register_node("mallory", forged_chain)
    assert not replica.sync()
    assert replica.ledger.height == 1


def test_partitioned_peer_is_unreachable(clock):
    network = NetworkSimulator()
    authority = _authority("authority-1", network, clock)
    replica = _replica("replica-1", network, [authority], clock)
    authority.enqueue([fake_ballot(key_image="k")])
    authority.drain()
    network.set_partitioned("authority-1")
    assert not replica.sync()
    network.set_partitioned("authority-1", False)
    assert replica.sync()


def test_start_stop_runs_drain_on_schedule(clock):
    key, _ = CryptoManager.generate_signature_keypair()
    node = LedgerNode(
        "authority-1",
        Ledger(),
        AcceptAllValidator(),
        is_authority=True,
        signing_key=key,
        clock=clock,
        block_interval=0.01,
    )
    node.enqueue([fake_ballot(key_image="k")])
    node.start()
    try:
        for _ in range(200):
            if node.ledger.height == 2:
                break
            time.sleep(0.01)
    finally:
        node.stop()
    assert node.ledger.height == 2


def test_replica_requires_authority_keys(clock):
    with pytest.raises(ValidationError):
        LedgerNode("replica-1", Ledger(), AcceptAllValidator(), NetworkSimulator(), clock=clock)


def test_replica_rejects_unsigned_longer_chain(clock):
    network = NetworkSimulator()
    authority = _authority("authority-1", network, clock)
    replica = _replica("replica-1", network, [authority], clock)

    def unsigned_chain():
        chain = [Ledger().last_block]
        for i in range(3):
            last = chain[-1]
            ballots = [fake_ballot(key_image=f"u{i}")]
            chain.append(Block.create(last.index + 1, last.hash, 1.0 + i, ballots, "authority-1"))
        return [block.to_dict() for block in chain]

    network.unregister_node("authority-1")
    network.register_node("mallory", unsigned_chain)
    assert not replica.sync()
    assert replica.ledger.height == 1


def test_scheduled_cycles_need_authority_status(clock):
    network = NetworkSimulator()
    authority = _authority("authority-1", network, clock)
    replica = _replica("replica-1", network, [authority], clock)
    with pytest.raises(NotAuthorityError):
        replica.start()
    replica.stop()
