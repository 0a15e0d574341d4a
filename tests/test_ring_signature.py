import dataclasses

import pytest

import ring_signature
from errors import ValidationError


MESSAGE = b"ballot payload"


def _ring(ring_keys):
    return [pk for _, pk in ring_keys]


def test_sign_verify_round_trip(ring_keys):
    private_key, _ = ring_keys[2]
    signature = ring_signature.sign(MESSAGE, private_key, _ring(ring_keys))
    assert ring_signature.verify(MESSAGE, signature)
    assert not ring_signature.verify(b"other payload", signature)


@pytest.mark.parametrize("field", ["challenges", "responses"])
def test_flipping_any_scalar_bit_breaks_verification(ring_keys, field):
    private_key, _ = ring_keys[0]
    signature = ring_signature.sign(MESSAGE, private_key, _ring(ring_keys))
    values = getattr(signature, field)
    for position in range(len(values)):
        tampered = list(values)
        tampered[position] ^= 1
        forged = dataclasses.replace(signature, **{field: tampered})
        assert not ring_signature.verify(MESSAGE, forged)


def test_key_image_stable_per_signer_and_distinct_across_signers(ring_keys):
    ring = _ring(ring_keys)
    (x0, p0), (x1, p1) = ring_keys[0], ring_keys[1]
    first = ring_signature.sign(b"vote one", x0, ring)
    second = ring_signature.sign(b"vote two", x0, ring)
    other = ring_signature.sign(b"vote one", x1, ring)

    assert first.key_image == second.key_image == ring_signature.compute_key_image(x0, p0)
    assert first.key_image != other.key_image
    assert ring_signature.is_linked(first, second)
    assert not ring_signature.is_linked(first, other)


def test_signature_does_not_reveal_signer_position(ring_keys):
    ring = _ring(ring_keys)
    signature = ring_signature.sign(MESSAGE, ring_keys[3][0], ring)
    assert list(signature.public_keys) == ring
    assert all(0 < r < ring_signature.ORDER for r in signature.responses)


def test_preconditions(ring_keys):
    ring = _ring(ring_keys)
    private_key, public_key = ring_keys[0]
    outsider, _ = ring_signature.generate_keypair()
    with pytest.raises(ValidationError):
        ring_signature.sign(MESSAGE, private_key, [public_key])
    with pytest.raises(ValidationError):
        ring_signature.sign(MESSAGE, outsider, ring)
    with pytest.raises(ValidationError):
        ring_signature.sign(MESSAGE, private_key, ring + [public_key])
    with pytest.raises(ValidationError):
        ring_signature.sign(MESSAGE, private_key, ring[:2] + ["05" + "11" * 32])
    with pytest.raises(ValidationError):
        ring_signature.sign(MESSAGE, 0, ring)


def test_verify_rejects_structural_problems(ring_keys):
    ring = _ring(ring_keys)
    signature = ring_signature.sign(MESSAGE, ring_keys[1][0], ring)

    truncated = dataclasses.replace(
        signature,
        challenges=signature.challenges[:1],
        responses=signature.responses[:1],
        public_keys=signature.public_keys[:1],
    )
    assert not ring_signature.verify(MESSAGE, truncated)
    assert not ring_signature.verify(MESSAGE, dataclasses.replace(signature, challenges=signature.challenges[:-1]))
    assert not ring_signature.verify(MESSAGE, dataclasses.replace(signature, key_image="zz"))
    other_image = ring_signature.compute_key_image(*ring_keys[0])
    assert not ring_signature.verify(MESSAGE, dataclasses.replace(signature, key_image=other_image))
    swapped = list(signature.public_keys)
    swapped[0], swapped[1] = swapped[1], swapped[0]
    assert not ring_signature.verify(MESSAGE, dataclasses.replace(signature, public_keys=swapped))


def test_hash_to_point_is_deterministic_and_not_the_generator(ring_keys):
    _, public_key = ring_keys[0]
    point = ring_signature.hash_to_point(public_key)
    assert ring_signature.encode_point(point) == ring_signature.encode_point(ring_signature.hash_to_point(public_key))
    assert ring_signature.encode_point(point) != ring_signature.encode_point(ring_signature.G)
    assert ring_signature.encode_point(point) != ring_signature.encode_point(
        ring_signature.hash_to_point(ring_keys[1][1])
    )


def test_compute_key_image_requires_matching_keys(ring_keys):
    with pytest.raises(ValidationError):
        ring_signature.compute_key_image(ring_keys[0][0], ring_keys[1][1])


def test_verify_requires_canonical_encodings(ring_keys):
    ring = _ring(ring_keys)
    signature = ring_signature.sign(MESSAGE, ring_keys[2][0], ring)
    upper_image = dataclasses.replace(signature, key_image=signature.key_image.upper())
    assert upper_image.key_image != signature.key_image
    assert not ring_signature.verify(MESSAGE, upper_image)
    upper_ring = dataclasses.replace(signature, public_keys=[pk.upper() for pk in signature.public_keys])
    assert not ring_signature.verify(MESSAGE, upper_ring)
    assert ring_signature.is_linked(signature, upper_image)
