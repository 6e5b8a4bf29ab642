"""
Adjudicators and Delegations

After the fraud-proof window closes, a registered proposer key may sign
delegations handing duties to a delegate key under the rules of one
adjudicator. If the delegate (or proposer) then breaks those rules, anyone
holding the signed delegation and the evidence can ask the commitment
slasher to consult the adjudicator named in it.

An adjudicator is untrusted code with exactly two capabilities:

    domain_separator() -> bytes
        Tag under which its delegations are signed. It must differ from the
        registry's registration domain.

    slash(delegation, evidence) -> (slash_gwei, reward_gwei)
        Judge the evidence. Raising means "no fault found".

Adjudicators are looked up by address in an `AdjudicatorDirectory`.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from stakereg.canonical import jcs_canonicalize
from stakereg.core.hardening import InputValidationError, UnknownAdjudicator, Validators
from stakereg.signing import SignatureGateway


# =============================================================================
# DELEGATIONS
# =============================================================================

@dataclass(frozen=True)
class Delegation:
    """Off-ledger statement by a proposer key."""
    proposer_key: bytes
    delegate_key: bytes
    adjudicator: str
    valid_until: int
    metadata: bytes = b""

    def __post_init__(self):
        address = Validators.validate_address(self.adjudicator, "adjudicator").unwrap(adjudicator=self.adjudicator)
        object.__setattr__(self, "adjudicator", address)
        if isinstance(self.valid_until, bool) or not isinstance(self.valid_until, int) or self.valid_until < 0:
            raise InputValidationError("valid_until must be a non-negative integer", valid_until=self.valid_until)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adjudicator": self.adjudicator,
            "delegateKey": self.delegate_key.hex(),
            "metadata": self.metadata.hex(),
            "proposerKey": self.proposer_key.hex(),
            "validUntil": self.valid_until,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Delegation":
        return cls(
            proposer_key=bytes.fromhex(data["proposerKey"]),
            delegate_key=bytes.fromhex(data["delegateKey"]),
            adjudicator=data["adjudicator"],
            valid_until=int(data["validUntil"]),
            metadata=bytes.fromhex(data.get("metadata", "")),
        )

    def encode(self) -> bytes:
        """Canonical bytes the proposer signs."""
        return jcs_canonicalize(self.to_dict())


@dataclass(frozen=True)
class SignedDelegation:
    """A delegation plus the proposer's signature over `Delegation.encode()`."""
    delegation: Delegation
    signature: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegation": self.delegation.to_dict(),
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedDelegation":
        return cls(
            delegation=Delegation.from_dict(data["delegation"]),
            signature=bytes.fromhex(data["signature"]),
        )


def sign_delegation(
    gateway: SignatureGateway,
    delegation: Delegation,
    secret_key: bytes,
    domain: bytes,
) -> SignedDelegation:
    """Sign `delegation` with the proposer's secret key under `domain`."""
    return SignedDelegation(
        delegation=delegation,
        signature=gateway.sign(delegation.encode(), secret_key, domain),
    )


# =============================================================================
# ADJUDICATOR INTERFACE
# =============================================================================

class Adjudicator(ABC):
    """Judges evidence against a delegation and names the penalty."""

    @abstractmethod
    def domain_separator(self) -> bytes:
        """Domain under which delegations for this adjudicator are signed."""

    @abstractmethod
    def slash(self, delegation: Delegation, evidence: bytes) -> Tuple[int, int]:
        """Return (slash_gwei, reward_gwei). Raise if there is no fault."""


class AdjudicatorDirectory:
    """Address-keyed lookup of deployed adjudicators."""

    def __init__(self):
        self._adjudicators: Dict[str, Adjudicator] = {}
        self._lock = threading.Lock()

    def register(self, address: str, adjudicator: Adjudicator) -> str:
        """Bind `adjudicator` at `address`. Returns the normalized address."""
        normalized = Validators.validate_address(address, "adjudicator").unwrap(adjudicator=address)
        if not isinstance(adjudicator, Adjudicator):
            raise InputValidationError("adjudicator must implement Adjudicator", adjudicator=address)
        with self._lock:
            self._adjudicators[normalized] = adjudicator
        return normalized

    def unregister(self, address: str) -> bool:
        with self._lock:
            return self._adjudicators.pop(address.lower(), None) is not None

    def get(self, address: str) -> Adjudicator:
        """Adjudicator at `address`; raises UnknownAdjudicator."""
        with self._lock:
            adjudicator = self._adjudicators.get(address.lower()) if isinstance(address, str) else None
        if adjudicator is None:
            raise UnknownAdjudicator("no adjudicator at this address", adjudicator=str(address))
        return adjudicator

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._adjudicators

    def __len__(self) -> int:
        return len(self._adjudicators)

    def addresses(self) -> List[str]:
        with self._lock:
            return sorted(self._adjudicators)
