"""
Commitment Slasher

Once the fraud-proof window has closed, the keys under a root are trusted
to have signed their registration. A proposer key that later signs a
delegation takes on the rules of the adjudicator named in it. Anyone holding
that signed delegation plus evidence of a breach can call
`slash_commitment`:

    1. the proposer key is committed under the root (Merkle proof)
    2. the adjudicator exists and uses its own signing domain
    3. the delegation is signed by the proposer key and not expired
    4. the adjudicator returns (slash_gwei, reward_gwei)

Distribution, bounded by `slash + reward <= collateral`:

    challenger         <- slash + reward
    withdrawal address <- collateral - slash - reward

and the record is deleted.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Sequence, Tuple

from stakereg.accumulator import coerce_hash, leaf_hash, verify_proof
from stakereg.core.adjudicator import Adjudicator, AdjudicatorDirectory, SignedDelegation
from stakereg.core.events import OperatorSlashed
from stakereg.core.hardening import (
    AdjudicatorReverted,
    AmountExceedsCollateral,
    CryptoUtils,
    DelegationExpired,
    DelegationSignatureInvalid,
    InvalidDomainSeparator,
    NoCollateralSlashed,
    NotRegisteredKey,
    ReentrancyGuard,
    RegistryError,
    Validators,
    WindowNotMet,
)
from stakereg.core.ledger import OperatorLedger, registry_operation
from stakereg.core.observability import RegistryLayer, get_logger
from stakereg.core.vault import WEI_PER_GWEI


def _is_amount(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and x >= 0


class CommitmentSlasher:
    """Slashes operators whose keys broke an adjudicated delegation."""

    def __init__(self, ledger: OperatorLedger, directory: AdjudicatorDirectory):
        self.ledger = ledger
        self.directory = directory
        self._log = get_logger("commitment", RegistryLayer.COMMITMENT)

    @property
    def guard(self) -> ReentrancyGuard:
        return self.ledger.guard

    def _domain_of(self, adjudicator: Adjudicator, address: str) -> bytes:
        try:
            domain = adjudicator.domain_separator()
        except RegistryError:
            raise
        except Exception as e:
            raise AdjudicatorReverted("domain_separator() failed", adjudicator=address, cause=type(e).__name__) from e

        if not isinstance(domain, (bytes, bytearray)) or not domain or len(domain) > 255:
            raise InvalidDomainSeparator("adjudicator domain must be 1..255 bytes", adjudicator=address)
        if CryptoUtils.secure_compare(bytes(domain), self.ledger.parameters.registration_domain):
            raise InvalidDomainSeparator("adjudicator reuses the registration domain", adjudicator=address)
        return bytes(domain)

    def _judge(self, adjudicator: Adjudicator, signed: SignedDelegation, evidence: bytes, address: str) -> Tuple[int, int]:
        try:
            result = adjudicator.slash(signed.delegation, evidence)
        except RegistryError:
            raise
        except Exception as e:
            raise AdjudicatorReverted("adjudicator rejected the evidence", adjudicator=address, cause=type(e).__name__) from e

        if not isinstance(result, tuple) or len(result) != 2 or not all(_is_amount(x) for x in result):
            raise AdjudicatorReverted("adjudicator returned a malformed result", adjudicator=address, result=repr(result))
        return result

    @registry_operation("slash_commitment")
    def slash_commitment(
        self,
        root: Any,
        registration_signature: bytes,
        proof: Sequence[Any],
        leaf_index: int,
        signed_delegation: SignedDelegation,
        evidence: bytes,
        caller: str,
    ) -> Tuple[int, int]:
        """
        Slash the operator behind `root` for a breach judged by an adjudicator.

        Returns (slash_gwei, reward_gwei).
        """
        ledger = self.ledger
        op = ledger.require_operator(root)
        key = coerce_hash(root)

        opens_at = op.registered_at + ledger.parameters.fraud_proof_window
        if ledger.clock.height < opens_at:
            raise WindowNotMet(
                "fraud-proof window is still open",
                height=ledger.clock.height,
                opens_at=opens_at,
            )

        delegation = signed_delegation.delegation
        try:
            leaf = leaf_hash(delegation.proposer_key, bytes(registration_signature))
        except (TypeError, ValueError) as e:
            raise NotRegisteredKey(f"proposer key cannot be committed: {e}", root=key, leaf_index=leaf_index) from e
        if not verify_proof(key, leaf, leaf_index, proof):
            raise NotRegisteredKey("proposer key is not committed under this root", root=key, leaf_index=leaf_index)

        address = delegation.adjudicator
        adjudicator = self.directory.get(address)
        domain = self._domain_of(adjudicator, address)

        if not ledger.gateway.verify(delegation.encode(), signed_delegation.signature, delegation.proposer_key, domain):
            raise DelegationSignatureInvalid("delegation is not signed by the proposer key", adjudicator=address)

        if ledger.clock.timestamp > delegation.valid_until:
            raise DelegationExpired(
                "delegation has expired",
                timestamp=ledger.clock.timestamp,
                valid_until=delegation.valid_until,
            )

        slash_gwei, reward_gwei = self._judge(adjudicator, signed_delegation, evidence, address)
        if slash_gwei == 0:
            raise NoCollateralSlashed("adjudicator slashed nothing", adjudicator=address)
        if slash_gwei + reward_gwei > op.collateral_gwei:
            raise AmountExceedsCollateral(
                "slash plus reward exceeds collateral",
                slash_gwei=slash_gwei,
                reward_gwei=reward_gwei,
                collateral_gwei=op.collateral_gwei,
            )

        challenger = Validators.validate_address(caller, "caller").unwrap(caller=str(caller))

        returned_gwei = op.collateral_gwei - slash_gwei - reward_gwei
        with ledger.atomic():
            ledger.emit(OperatorSlashed(
                registration_root="0x" + key.hex(),
                proposer_key="0x" + delegation.proposer_key.hex(),
                challenger=challenger,
                adjudicator=address,
                slash_gwei=slash_gwei,
                reward_gwei=reward_gwei,
                returned_gwei=returned_gwei,
            ))
            ledger.settle(
                key,
                [
                    (challenger, (slash_gwei + reward_gwei) * WEI_PER_GWEI),
                    (op.withdrawal_address, returned_gwei * WEI_PER_GWEI),
                ],
                reason="commitment",
            )

        self._log.info(
            "Operator slashed",
            operation="slash_commitment",
            root="0x" + key.hex(),
            adjudicator=address,
            slash_gwei=slash_gwei,
            reward_gwei=reward_gwei,
        )
        return slash_gwei, reward_gwei
