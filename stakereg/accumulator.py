"""Merkle accumulator for registration batches.

An operator commits to an ordered list of registrations through a single
32-byte root. Registration never touches individual keys again; challengers
later prove membership of one leaf with a sibling path.

Tree shape:
- Binary tree padded to a power of two. Padding leaves are `ZERO_HASH`.
- `height` defaults to the smallest h with `leaf_count <= 2**h` (0 for one
  leaf, where the root is the leaf itself). A caller may pin a larger height;
  `leaf_count > 2**height` is rejected with `TreeHeightError`.
- Proofs produced for one height are not valid for another. The height is
  implied by the proof length.

Hashing:
- SHA-256
- Domain separation:
  - leaf = SHA256(0x00 || u16(len(pk)) || pk || u16(len(sig)) || sig)
  - node = SHA256(0x01 || left || right)   (ordered, no sorting)

A leaf commits to the *pair* (public key, registration signature), so the
commitment slasher can rebuild it from a delegation's proposer key plus the
registration signature.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, List, Optional, Sequence, Union


HASH_LEN = 32
ZERO_HASH = b"\x00" * HASH_LEN
MAX_TREE_HEIGHT = 32
_MAX_FIELD_LEN = 0xFFFF

HashLike = Union[bytes, bytearray, str]


class TreeHeightError(ValueError):
    """Requested tree height cannot hold the supplied leaves."""


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def coerce_hash(value: Any) -> Optional[bytes]:
    """Return `value` as 32 raw bytes, accepting raw bytes or 64 hex chars.

    Returns None for anything else.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value) if len(value) == HASH_LEN else None
    if isinstance(value, str):
        ss = value.strip().lower()
        if ss.startswith("0x"):
            ss = ss[2:]
        if len(ss) != 2 * HASH_LEN:
            return None
        try:
            return bytes.fromhex(ss)
        except ValueError:
            return None
    return None


def as_hash(value: HashLike, field_name: str = "hash") -> bytes:
    """Strict variant of `coerce_hash` for trusted call sites."""
    out = coerce_hash(value)
    if out is None:
        raise ValueError(f"{field_name} must be 32 bytes or 64 hex chars")
    return out


def leaf_hash(public_key: bytes, signature: bytes) -> bytes:
    """Compute the leaf committing to one (public key, signature) pair."""
    if len(public_key) > _MAX_FIELD_LEN or len(signature) > _MAX_FIELD_LEN:
        raise ValueError("public_key and signature must each be shorter than 64 KiB")
    return _sha256(
        b"\x00"
        + len(public_key).to_bytes(2, "big") + bytes(public_key)
        + len(signature).to_bytes(2, "big") + bytes(signature)
    )


def node_hash(left: bytes, right: bytes) -> bytes:
    """Compute a parent hash from two ordered 32-byte children."""
    if len(left) != HASH_LEN or len(right) != HASH_LEN:
        raise ValueError("left and right must be 32 bytes")
    return _sha256(b"\x01" + left + right)


def minimal_height(leaf_count: int) -> int:
    """Smallest height whose padded width holds `leaf_count` leaves."""
    if leaf_count < 0:
        raise ValueError("leaf_count must be >= 0")
    if leaf_count <= 1:
        return 0
    return (leaf_count - 1).bit_length()


def _resolve_height(leaf_count: int, height: Optional[int]) -> int:
    if height is None:
        return minimal_height(leaf_count)
    if isinstance(height, bool) or not isinstance(height, int):
        raise TreeHeightError("height must be an integer")
    if height < 0 or height > MAX_TREE_HEIGHT:
        raise TreeHeightError(f"height must be within [0, {MAX_TREE_HEIGHT}]")
    if leaf_count > (1 << height):
        raise TreeHeightError(
            f"{leaf_count} leaves do not fit in a tree of height {height} "
            f"(capacity {1 << height})"
        )
    return height


def build_levels(leaves: Sequence[HashLike], height: Optional[int] = None) -> List[List[bytes]]:
    """Build every level of the padded tree, leaves first, root last."""
    level = [as_hash(lh, "leaf") for lh in leaves]
    h = _resolve_height(len(level), height)
    level.extend([ZERO_HASH] * ((1 << h) - len(level)))

    levels = [level]
    while len(level) > 1:
        level = [node_hash(level[i], level[i + 1]) for i in range(0, len(level), 2)]
        levels.append(level)
    return levels


def build_root(leaves: Sequence[HashLike], height: Optional[int] = None) -> bytes:
    """Compute the commitment root for an ordered leaf list.

    An empty list yields `ZERO_HASH`, which the ledger treats as degenerate.
    """
    if not leaves:
        _resolve_height(0, height)
        return ZERO_HASH
    return build_levels(leaves, height)[-1][0]


def build_proof(leaves: Sequence[HashLike], index: int, height: Optional[int] = None) -> List[bytes]:
    """Return the sibling path (bottom-up) for `leaves[index]`."""
    if index < 0 or index >= len(leaves):
        raise ValueError("index out of range")
    levels = build_levels(leaves, height)
    path: List[bytes] = []
    pos = index
    for level in levels[:-1]:
        path.append(level[pos ^ 1])
        pos //= 2
    return path


def verify_proof(root: Any, leaf: Any, index: Any, proof: Any) -> bool:
    """Verify that `leaf` sits at `index` under `root`.

    Bit `d` of `index` says whether the running hash is the right child at
    depth `d`. Every sibling is consumed regardless of earlier failures so the
    check has the same shape for every input. Malformed input returns False.
    """
    root_b = coerce_hash(root)
    leaf_b = coerce_hash(leaf)
    if root_b is None or leaf_b is None:
        return False
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        return False
    if isinstance(proof, (str, bytes, bytearray)):
        return False
    try:
        steps = list(proof)
    except TypeError:
        return False
    if len(steps) > MAX_TREE_HEIGHT:
        return False

    well_formed = True
    cur = leaf_b
    for depth, step in enumerate(steps):
        sibling = coerce_hash(step)
        if sibling is None:
            well_formed = False
            sibling = ZERO_HASH
        if (index >> depth) & 1:
            cur = node_hash(sibling, cur)
        else:
            cur = node_hash(cur, sibling)

    in_range = index < (1 << len(steps))
    matches = hmac.compare_digest(cur, root_b)
    return well_formed and in_range and matches
