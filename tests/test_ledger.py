import dataclasses

import pytest

from conftest import fake_ballot
from constants import GENESIS_PREVIOUS_HASH
from crypto_manager import CryptoManager
from errors import DuplicateVoteError, ValidationError
from ledger import Block, Ledger, genesis_block
from merkle import MerkleTree

SIGNING_KEY, SIGNING_PUBLIC = CryptoManager.generate_signature_keypair()


def _ledger():
    return Ledger(authority_keys={"authority-1": SIGNING_PUBLIC})


def _append(ledger, ballots, validator_id="authority-1", signing_key=SIGNING_KEY, timestamp=10.0):
    last = ledger.last_block
    block = Block.create(last.index + 1, last.hash, timestamp, ballots, validator_id, signing_key)
    ledger.append_block(block)
    return block


def test_genesis_is_deterministic():
    first, second = genesis_block(), genesis_block()
    assert first == second
    assert first.index == 0
    assert first.previous_hash == GENESIS_PREVIOUS_HASH
    assert Ledger().chain == [first]


def test_blocks_are_hash_chained():
    ledger = _ledger()
    b1 = _append(ledger, [fake_ballot(key_image="k1")])
    b2 = _append(ledger, [fake_ballot(key_image="k2"), fake_ballot(key_image="k3")])
    assert b1.previous_hash == genesis_block().hash
    assert b2.previous_hash == b1.hash
    assert b2.hash == b2.calculate_hash()
    assert ledger.validate_chain(ledger.chain)


def test_wrong_previous_hash_rejected():
    ledger = _ledger()
    block = Block.create(1, "ab" * 32, 1.0, [fake_ballot()], "authority-1")
    with pytest.raises(ValidationError):
        ledger.append_block(block)
    assert ledger.height == 1


def test_duplicate_key_image_never_appended():
    ledger = _ledger()
    _append(ledger, [fake_ballot(key_image="same", submitted_at=1.0)])
    with pytest.raises(DuplicateVoteError):
        _append(ledger, [fake_ballot(key_image="same", submitted_at=2.0)])
    with pytest.raises(DuplicateVoteError):
        _append(ledger, [fake_ballot(key_image="x", submitted_at=3.0), fake_ballot(key_image="x", submitted_at=4.0)])
    assert ledger.height == 2


def test_key_images_scoped_per_election():
    ledger = _ledger()
    _append(ledger, [fake_ballot(election_id="a", key_image="k")])
    _append(ledger, [fake_ballot(election_id="b", key_image="k")])
    assert ledger.is_key_image_used("a", "k")
    assert ledger.is_key_image_used("b", "k")
    assert not ledger.is_key_image_used("c", "k")
    assert len(ledger.get_blocks("a")) == 1
    assert len(ledger.get_ballots("b")) == 1


def test_tampered_chain_is_invalid():
    ledger = _ledger()
    _append(ledger, [fake_ballot(key_image="k1")])
    _append(ledger, [fake_ballot(key_image="k2")])
    chain = ledger.chain
    forged = dataclasses.replace(chain[1], ballots=(fake_ballot(key_image="evil"),))
    assert not ledger.validate_chain([chain[0], forged, chain[2]])
    assert not ledger.validate_chain(chain[1:])


def test_signatures_enforced_for_known_authorities():
    signing_key, public_bytes = CryptoManager.generate_signature_keypair()
    other_key, _ = CryptoManager.generate_signature_keypair()
    ledger = Ledger(authority_keys={"authority-1": public_bytes})

    _append(ledger, [fake_ballot(key_image="k1")], signing_key=signing_key)
    with pytest.raises(ValidationError):
        _append(ledger, [fake_ballot(key_image="k2")], signing_key=other_key)
    with pytest.raises(ValidationError):
        _append(ledger, [fake_ballot(key_image="k3")], validator_id="intruder", signing_key=other_key)
    assert ledger.height == 2


def test_inclusion_proof():
    ledger = _ledger()
    ballots = [fake_ballot(key_image=f"k{i}") for i in range(5)]
    _append(ledger, ballots)
    target = ballots[3].ballot_hash()
    index, root, proof = ledger.inclusion_proof(target)
    assert index == 1
    assert Ledger.verify_inclusion(target, proof, root)
    assert not Ledger.verify_inclusion(ballots[2].ballot_hash(), proof, root)
    with pytest.raises(KeyError):
        ledger.inclusion_proof("00" * 32)


def test_replace_chain_rebuilds_indices():
    source = _ledger()
    _append(source, [fake_ballot(key_image="k1")])
    target = _ledger()
    target.replace_chain(source.chain)
    assert target.is_key_image_used("election-1", "k1")
    with pytest.raises(ValidationError):
        target.replace_chain(source.chain[1:])


def test_block_dict_layout():
    ledger = _ledger()
    block = _append(ledger, [fake_ballot(key_image="k1")])
    data = block.to_dict()
    assert {"index", "previousHash", "timestamp", "ballots", "hash", "merkleRoot", "signature", "validatorId"} <= set(data)
    assert Block.from_dict(data) == block
    with pytest.raises(ValidationError):
        Block.from_dict({"index": 1})


def test_merkle_proofs_for_odd_leaf_counts():
    leaves = [f"{i:064x}" for i in range(7)]
    tree = MerkleTree(leaves)
    for i, leaf in enumerate(leaves):
        assert MerkleTree.verify_proof(leaf, tree.get_proof(i), tree.root)
    assert not MerkleTree.verify_proof(leaves[0], tree.get_proof(1), tree.root)
    assert MerkleTree([leaves[0]]).root == leaves[0]


def test_unsigned_blocks_never_accepted():
    unsigned = Block.create(1, genesis_block().hash, 1.0, [fake_ballot(key_image="k1")], "authority-1")
    assert unsigned.signature == ""
    for ledger in (Ledger(), _ledger()):
        with pytest.raises(ValidationError):
            ledger.append_block(unsigned)
        assert not ledger.validate_chain([genesis_block(), unsigned])
        assert ledger.height == 1
