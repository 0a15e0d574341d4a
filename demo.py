"""Scripted end-to-end election with a printed report."""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Sequence

import numpy as np

from clock import ManualClock
from config import PipelineConfig
from election import ElectionService
from threshold import partial_decrypt_all
from voter import VoterClient


def run_election_demo(
    choices: Sequence[int] = (0, 1, 0, 2, 0),
    candidate_count: int = 3,
    config: PipelineConfig | None = None,
) -> List[int]:
    """运行一次完整选举并打印报告 / Run one full election and print the report."""
    config = config or PipelineConfig(
        paillier_bits=512, rsa_bits=1024, share_count=3, share_threshold=2, min_batch_size=3
    )
    clock = ManualClock()
    service = ElectionService(config=config, clock=clock)
    election_id = "demo-election"

    print("\n" + "=" * 80)
    print("***  ANONYMOUS LEDGER VOTING DEMO  ***".center(80))
    print("=" * 80 + "\n")
    print("*** Election Parameters ***")
    print(f"  • Candidates:                 {candidate_count}")
    print(f"  • Voters:                     {len(choices)}")
    print(f"  • Decryption threshold:       {config.share_threshold}-of-{config.share_count}")
    print(f"  • Paillier modulus:           {config.paillier_bits} bits")
    print(f"  • Blind signature key:        RSA-{config.rsa_bits}")
    print(f"  • Mixnet batch size:          {config.min_batch_size}")
    print("-" * 80 + "\n")

    public_key, shares = service.setup_election(election_id, candidate_count, max_voters=len(choices))
    election = service.election(election_id)
    voters = [VoterClient(f"voter-{i}", clock=clock) for i in range(1, len(choices) + 1)]
    for voter in voters:
        service.register_voter(election_id, voter.voter_id, voter.public_key)
    anonymity_set = service.registry.anonymity_set(election_id)

    cast_times: Dict[str, float] = {}
    for voter, choice in zip(voters, choices):
        start_time = time.time()
        ballot = voter.cast_vote(
            election, choice, public_key, service, service.authority_public_key, anonymity_set
        )
        cast_times[voter.voter_id] = time.time() - start_time
        result = service.submit_ballot(ballot)
        status = "✓ accepted" if result.accepted else f"✗ rejected ({result.reason})"
        print(f"  {voter.voter_id}: {status}, key image {ballot.key_image[:16]}...")
        clock.advance(1.0)
        service.process_pending()

    service.close_election(election_id)
    blocks = service.get_finalized_ballots(election_id)
    print(f"\n  ⛓  Blocks on ledger: {len(blocks)}")
    for block in blocks:
        print(f"     #{block.index}: {len(block.ballots)} ballots, hash {block.hash[:16]}...")

    tally = service.tally_engine(election_id).tally
    for share in shares[: config.share_threshold]:
        authority_id = f"trustee-{share.index}"
        service.submit_partial_decryption(authority_id, partial_decrypt_all(authority_id, tally.ciphertexts, share))
    counts = service.get_final_tally(election_id)

    print("\n" + "=" * 80)
    print("***  FINAL TALLY  ***".center(80))
    print("=" * 80 + "\n")
    for candidate, count in enumerate(counts):
        print(f"  Candidate {candidate}: {count}")
    expected = [list(choices).count(c) for c in range(candidate_count)]
    if counts == expected:
        print("\n  ✓ Threshold-decrypted tally matches the cast votes!")
    else:
        print(f"\n  ✗ WARNING: tally {counts} differs from cast votes {expected}")

    timings = np.array(list(cast_times.values()))
    print(f"\n  ⏱  Average ballot construction time: {np.mean(timings)*1000:.2f} ms")
    print(f"  ⏱  Slowest ballot construction:      {np.max(timings)*1000:.2f} ms")
    service.tally_engine(election_id).print_performance_report()
    return counts


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_election_demo()
