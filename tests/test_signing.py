"""
Signature gateway tests.

Ed25519 runs everywhere. BLS12-381 signing and pairing checks go through
pure-Python py_ecc and take seconds each, so they carry the `slow` marker.
"""

import pytest

from stakereg.signing import (
    BLSGateway,
    Ed25519Gateway,
    SignatureError,
    SignatureScheme,
    domain_separate,
    get_gateway,
)

DOMAIN = b"test/domain"
OTHER_DOMAIN = b"test/other"


class TestDomainSeparation:

    def test_prefix_layout(self):
        assert domain_separate(b"ab", b"msg") == b"\x02ab" + b"msg"

    def test_empty_domain_rejected(self):
        with pytest.raises(SignatureError):
            domain_separate(b"", b"msg")

    def test_long_domain_rejected(self):
        with pytest.raises(SignatureError):
            domain_separate(b"x" * 256, b"msg")

    def test_domain_boundary_is_unambiguous(self):
        assert domain_separate(b"ab", b"c") != domain_separate(b"a", b"bc")


class TestEd25519Gateway:

    def test_sign_and_verify(self):
        gw = Ed25519Gateway()
        kp = gw.generate_keypair()
        sig = gw.sign(b"hello", kp.secret_key, DOMAIN)
        assert len(kp.public_key) == 32
        assert len(sig) == 64
        assert gw.verify(b"hello", sig, kp.public_key, DOMAIN)

    def test_wrong_domain_message_or_key_fails(self):
        gw = Ed25519Gateway()
        kp = gw.generate_keypair()
        other = gw.generate_keypair()
        sig = gw.sign(b"hello", kp.secret_key, DOMAIN)
        assert not gw.verify(b"hello", sig, kp.public_key, OTHER_DOMAIN)
        assert not gw.verify(b"hellO", sig, kp.public_key, DOMAIN)
        assert not gw.verify(b"hello", sig, other.public_key, DOMAIN)

    def test_verify_never_raises_on_garbage(self):
        gw = Ed25519Gateway()
        kp = gw.generate_keypair()
        sig = gw.sign(b"hello", kp.secret_key, DOMAIN)
        assert gw.verify(b"hello", b"\x00" * 3, kp.public_key, DOMAIN) is False
        assert gw.verify(b"hello", sig, b"\x01" * 7, DOMAIN) is False
        assert gw.verify(b"hello", sig, kp.public_key, b"") is False

    def test_seeded_keys_are_deterministic(self):
        gw = Ed25519Gateway()
        seed = b"\x07" * 32
        assert gw.generate_keypair(seed) == gw.generate_keypair(seed)
        assert gw.public_key(gw.generate_keypair(seed).secret_key) == gw.generate_keypair(seed).public_key

    def test_short_seed_rejected(self):
        with pytest.raises(SignatureError):
            Ed25519Gateway().generate_keypair(b"\x01" * 16)

    def test_secret_key_not_in_repr(self):
        kp = Ed25519Gateway().generate_keypair(b"\x09" * 32)
        assert kp.secret_key.hex() not in repr(kp)

    def test_aggregation_unsupported(self):
        gw = Ed25519Gateway()
        with pytest.raises(SignatureError):
            gw.aggregate([b"\x00" * 64])
        with pytest.raises(SignatureError):
            gw.aggregate_public_keys([b"\x00" * 32])


class TestGatewaySelection:

    def test_by_enum_and_string(self):
        assert isinstance(get_gateway(SignatureScheme.ED25519), Ed25519Gateway)
        assert isinstance(get_gateway("bls12-381"), BLSGateway)
        assert isinstance(get_gateway(" ED25519 "), Ed25519Gateway)

    def test_unknown_scheme(self):
        with pytest.raises(SignatureError):
            get_gateway("secp256k1")


class TestBLSGatewayFast:
    """Checks that never reach a pairing."""

    def test_verify_rejects_wrong_lengths(self):
        gw = BLSGateway()
        assert gw.verify(b"m", b"\x00" * 95, b"\x00" * 48, DOMAIN) is False
        assert gw.verify(b"m", b"\x00" * 96, b"\x00" * 47, DOMAIN) is False

    def test_secret_key_range_checked(self):
        gw = BLSGateway()
        with pytest.raises(SignatureError):
            gw.sign(b"m", b"\x00" * 32, DOMAIN)
        with pytest.raises(SignatureError):
            gw.sign(b"m", b"\xff" * 32, DOMAIN)

    def test_empty_aggregation_rejected(self):
        gw = BLSGateway()
        with pytest.raises(SignatureError):
            gw.aggregate([])
        with pytest.raises(SignatureError):
            gw.aggregate_public_keys([])

    def test_seeded_keygen_is_deterministic(self):
        gw = BLSGateway()
        seed = b"\x42" * 32
        kp = gw.generate_keypair(seed)
        assert kp == gw.generate_keypair(seed)
        assert len(kp.public_key) == 48
        assert len(kp.secret_key) == 32

    def test_duplicate_public_keys_rejected(self):
        gw = BLSGateway()
        pk = gw.generate_keypair(b"\x05" * 32).public_key
        with pytest.raises(SignatureError):
            gw.aggregate_public_keys([pk, pk])


@pytest.mark.slow
class TestBLSGateway:

    def test_sign_and_verify(self):
        gw = BLSGateway()
        kp = gw.generate_keypair(b"\x11" * 32)
        sig = gw.sign(b"registration", kp.secret_key, DOMAIN)
        assert len(sig) == 96
        assert gw.verify(b"registration", sig, kp.public_key, DOMAIN)
        assert not gw.verify(b"registration", sig, kp.public_key, OTHER_DOMAIN)

    def test_aggregate_verifies_against_aggregated_key(self):
        gw = BLSGateway()
        a = gw.generate_keypair(b"\x21" * 32)
        b = gw.generate_keypair(b"\x22" * 32)
        msg = b"same message"
        agg_sig = gw.aggregate([gw.sign(msg, a.secret_key, DOMAIN), gw.sign(msg, b.secret_key, DOMAIN)])
        agg_pk = gw.aggregate_public_keys([a.public_key, b.public_key])
        assert gw.verify(msg, agg_sig, agg_pk, DOMAIN)
        assert not gw.verify(msg, agg_sig, a.public_key, DOMAIN)
