"""Signature gateway.

The registry never does curve arithmetic itself. It talks to a
`SignatureGateway` exposing sign / verify / aggregate over raw bytes, scoped
by a mandatory domain separator so that a signature produced in one protocol
context (registration, a given adjudicator) never verifies in another.

Schemes:
- BLS12-381 (py_ecc, proof-of-possession ciphersuite). G1 public keys
  (48 bytes compressed), G2 signatures (96 bytes compressed). Aggregates of
  signatures over the same message verify against the aggregated public key.
- Ed25519 (cryptography). 32-byte public keys, 64-byte signatures. No
  aggregation.

Signed bytes are `u8(len(domain)) || domain || message` for both schemes.

Security notes:
- py_ecc is pure Python and NOT constant-time. Use it for verification and
  tooling, not for signing on shared hardware.
- Aggregating public keys without proof-of-possession is open to rogue-key
  attacks. Aggregation here is tooling for keys the caller already trusts.
"""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Type

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from py_ecc.bls import G2ProofOfPossession as bls
from py_ecc.bls.g2_primitives import G1_to_pubkey, pubkey_to_G1, signature_to_G2
from py_ecc.optimized_bls12_381 import add, curve_order, is_inf


MAX_DOMAIN_LEN = 255
MAX_MESSAGE_LEN = 1024 * 1024  # 1 MB


class SignatureError(Exception):
    """Signature operation error (bad key material, unsupported operation)."""
    pass


class SignatureScheme(Enum):
    """Supported signature schemes."""
    BLS12_381 = "bls12-381"
    ED25519 = "ed25519"


@dataclass(frozen=True)
class KeyPair:
    """A secret/public key pair for one scheme."""
    scheme: SignatureScheme
    public_key: bytes
    secret_key: bytes = field(repr=False)


def domain_separate(domain: bytes, message: bytes) -> bytes:
    """Prefix `message` with its length-prefixed domain tag."""
    if not isinstance(domain, (bytes, bytearray)) or not domain:
        raise SignatureError("domain separator must be non-empty bytes")
    if len(domain) > MAX_DOMAIN_LEN:
        raise SignatureError(f"domain separator exceeds {MAX_DOMAIN_LEN} bytes")
    if len(message) > MAX_MESSAGE_LEN:
        raise SignatureError(f"message exceeds {MAX_MESSAGE_LEN} bytes")
    return len(domain).to_bytes(1, "big") + bytes(domain) + bytes(message)


class SignatureGateway(ABC):
    """Opaque sign/verify/aggregate capability for one scheme."""

    scheme: SignatureScheme
    public_key_len: int
    signature_len: int

    @abstractmethod
    def generate_keypair(self, seed: Optional[bytes] = None) -> KeyPair:
        """Create a key pair, deterministically when `seed` is given."""

    @abstractmethod
    def public_key(self, secret_key: bytes) -> bytes:
        """Derive the public key for `secret_key`."""

    @abstractmethod
    def sign(self, message: bytes, secret_key: bytes, domain: bytes) -> bytes:
        """Sign `message` under `domain`."""

    @abstractmethod
    def verify(self, message: bytes, signature: bytes, public_key: bytes, domain: bytes) -> bool:
        """Return True iff `signature` is valid. Never raises."""

    @abstractmethod
    def aggregate(self, signatures: Sequence[bytes]) -> bytes:
        """Combine signatures into one."""

    @abstractmethod
    def aggregate_public_keys(self, public_keys: Sequence[bytes]) -> bytes:
        """Combine public keys so that an aggregate signature verifies against them."""


# =============================================================================
# BLS12-381
# =============================================================================

class BLSGateway(SignatureGateway):
    """BLS12-381 signatures via py_ecc.

    Usage:
        gw = BLSGateway()
        kp = gw.generate_keypair()
        sig = gw.sign(b"msg", kp.secret_key, b"my-domain")
        assert gw.verify(b"msg", sig, kp.public_key, b"my-domain")
    """

    scheme = SignatureScheme.BLS12_381
    public_key_len = 48
    signature_len = 96
    secret_key_len = 32

    def _secret_int(self, secret_key: bytes) -> int:
        if len(secret_key) != self.secret_key_len:
            raise SignatureError(f"secret key must be {self.secret_key_len} bytes")
        sk_int = int.from_bytes(secret_key, "big")
        if sk_int == 0 or sk_int >= curve_order:
            raise SignatureError("secret key out of range [1, r-1]")
        return sk_int

    def _check_public_key(self, public_key: bytes) -> None:
        if len(public_key) != self.public_key_len:
            raise SignatureError(f"public key must be {self.public_key_len} bytes")
        try:
            valid = bls.KeyValidate(public_key)
        except Exception as e:
            raise SignatureError(f"invalid public key: {e}") from e
        if not valid:
            raise SignatureError("public key failed validation")

    def _check_signature(self, signature: bytes) -> None:
        if len(signature) != self.signature_len:
            raise SignatureError(f"signature must be {self.signature_len} bytes")
        try:
            point = signature_to_G2(signature)
        except Exception as e:
            raise SignatureError(f"invalid signature: {e}") from e
        if is_inf(point):
            raise SignatureError("signature is point at infinity")

    def generate_keypair(self, seed: Optional[bytes] = None) -> KeyPair:
        ikm = seed if seed is not None else secrets.token_bytes(32)
        if len(ikm) < 32:
            raise SignatureError("seed must be at least 32 bytes")
        sk_int = bls.KeyGen(ikm)
        return KeyPair(
            scheme=self.scheme,
            public_key=bls.SkToPk(sk_int),
            secret_key=sk_int.to_bytes(self.secret_key_len, "big"),
        )

    def public_key(self, secret_key: bytes) -> bytes:
        return bls.SkToPk(self._secret_int(secret_key))

    def sign(self, message: bytes, secret_key: bytes, domain: bytes) -> bytes:
        sk_int = self._secret_int(secret_key)
        return bls.Sign(sk_int, domain_separate(domain, message))

    def verify(self, message: bytes, signature: bytes, public_key: bytes, domain: bytes) -> bool:
        try:
            self._check_public_key(public_key)
            self._check_signature(signature)
            return bool(bls.Verify(public_key, domain_separate(domain, message), signature))
        except Exception:
            return False

    def aggregate(self, signatures: Sequence[bytes]) -> bytes:
        if not signatures:
            raise SignatureError("cannot aggregate empty signature list")
        for sig in signatures:
            self._check_signature(sig)
        return bls.Aggregate(list(signatures))

    def aggregate_public_keys(self, public_keys: Sequence[bytes]) -> bytes:
        if not public_keys:
            raise SignatureError("cannot aggregate empty public key list")
        if len(public_keys) != len(set(public_keys)):
            raise SignatureError("duplicate public keys not allowed")
        for pk in public_keys:
            self._check_public_key(pk)

        points = [pubkey_to_G1(pk) for pk in public_keys]
        agg_point = points[0]
        for p in points[1:]:
            agg_point = add(agg_point, p)
        if is_inf(agg_point):
            raise SignatureError("aggregated public key is point at infinity")
        return G1_to_pubkey(agg_point)


# =============================================================================
# Ed25519
# =============================================================================

class Ed25519Gateway(SignatureGateway):
    """Ed25519 signatures via cryptography. Fast; no aggregation."""

    scheme = SignatureScheme.ED25519
    public_key_len = 32
    signature_len = 64
    secret_key_len = 32

    def _private_key(self, secret_key: bytes) -> Ed25519PrivateKey:
        if len(secret_key) != self.secret_key_len:
            raise SignatureError(f"secret key must be {self.secret_key_len} bytes")
        return Ed25519PrivateKey.from_private_bytes(bytes(secret_key))

    def generate_keypair(self, seed: Optional[bytes] = None) -> KeyPair:
        if seed is None:
            private_key = Ed25519PrivateKey.generate()
        else:
            if len(seed) < 32:
                raise SignatureError("seed must be at least 32 bytes")
            private_key = Ed25519PrivateKey.from_private_bytes(bytes(seed[:32]))
        secret = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return KeyPair(scheme=self.scheme, public_key=self.public_key(secret), secret_key=secret)

    def public_key(self, secret_key: bytes) -> bytes:
        return self._private_key(secret_key).public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def sign(self, message: bytes, secret_key: bytes, domain: bytes) -> bytes:
        return self._private_key(secret_key).sign(domain_separate(domain, message))

    def verify(self, message: bytes, signature: bytes, public_key: bytes, domain: bytes) -> bool:
        if len(public_key) != self.public_key_len or len(signature) != self.signature_len:
            return False
        try:
            pub = Ed25519PublicKey.from_public_bytes(bytes(public_key))
            pub.verify(bytes(signature), domain_separate(domain, message))
            return True
        except (InvalidSignature, SignatureError, ValueError):
            return False

    def aggregate(self, signatures: Sequence[bytes]) -> bytes:
        raise SignatureError("Ed25519 does not support signature aggregation")

    def aggregate_public_keys(self, public_keys: Sequence[bytes]) -> bytes:
        raise SignatureError("Ed25519 does not support public key aggregation")


_GATEWAYS: Dict[SignatureScheme, Type[SignatureGateway]] = {
    SignatureScheme.BLS12_381: BLSGateway,
    SignatureScheme.ED25519: Ed25519Gateway,
}


def get_gateway(scheme: "SignatureScheme | str") -> SignatureGateway:
    """Return a gateway for `scheme` (enum member or its string value)."""
    if isinstance(scheme, str):
        try:
            scheme = SignatureScheme(scheme.strip().lower())
        except ValueError:
            raise SignatureError(f"Unsupported signature scheme: {scheme!r}") from None
    return _GATEWAYS[scheme]()
