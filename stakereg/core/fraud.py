"""
Fraud-Proof Slasher

During the fraud-proof window anyone may show that a committed registration
is not a valid signature over the operator's terms (withdrawal address and
unregistration delay). A single bad leaf forfeits the whole record:

    challenger        <- min(min_collateral, collateral)
    withdrawal address <- collateral - reward

and the record is deleted. A challenge against a correctly signed leaf is
rejected with `ChallengeInvalid` and changes nothing.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Sequence

from stakereg.accumulator import coerce_hash, verify_proof
from stakereg.core.events import RegistrationSlashed
from stakereg.core.hardening import (
    ChallengeInvalid,
    InputValidationError,
    NotRegistered,
    ReentrancyGuard,
    Validators,
    WindowExpired,
)
from stakereg.core.ledger import OperatorLedger, Registration, registry_operation
from stakereg.core.observability import RegistryLayer, get_logger


class FraudProofSlasher:
    """Deletes operators that committed an invalid registration signature."""

    def __init__(self, ledger: OperatorLedger):
        self.ledger = ledger
        self._log = get_logger("fraud", RegistryLayer.FRAUD)

    @property
    def guard(self) -> ReentrancyGuard:
        return self.ledger.guard

    @registry_operation("slash_registration")
    def slash_registration(
        self,
        root: Any,
        registration: Any,
        proof: Sequence[Any],
        leaf_index: int,
        caller: str,
    ) -> int:
        """
        Prove `registration` sits at `leaf_index` under `root` and is badly signed.

        Returns the reward paid to `caller`, in wei.
        """
        ledger = self.ledger
        op = ledger.require_operator(root)
        key = coerce_hash(root)

        deadline = op.registered_at + ledger.parameters.fraud_proof_window
        if ledger.clock.height > deadline:
            raise WindowExpired(
                "fraud-proof window has closed",
                height=ledger.clock.height,
                deadline=deadline,
            )

        try:
            registration = Registration.coerce(registration)
        except (KeyError, TypeError, ValueError) as e:
            raise InputValidationError(f"malformed registration: {e}") from e
        try:
            leaf = registration.leaf()
        except (TypeError, ValueError) as e:
            raise NotRegistered(f"registration cannot be committed: {e}", root=key, leaf_index=leaf_index) from e
        if not verify_proof(key, leaf, leaf_index, proof):
            raise NotRegistered("registration is not committed under this root", root=key, leaf_index=leaf_index)

        if ledger.verify_registration(registration, op):
            raise ChallengeInvalid("registration signature is valid", root=key, leaf_index=leaf_index)

        challenger = Validators.validate_address(caller, "caller").unwrap(caller=str(caller))

        collateral_wei = op.collateral_wei
        reward_wei = min(ledger.parameters.min_collateral_wei, collateral_wei)
        returned_wei = collateral_wei - reward_wei

        with ledger.atomic():
            ledger.emit(RegistrationSlashed(
                registration_root="0x" + key.hex(),
                challenger=challenger,
                withdrawal_address=op.withdrawal_address,
                reward_wei=reward_wei,
                returned_wei=returned_wei,
                leaf_index=leaf_index,
            ))
            ledger.settle(
                key,
                [(challenger, reward_wei), (op.withdrawal_address, returned_wei)],
                reason="fraud_proof",
            )

        self._log.info(
            "Registration slashed",
            operation="slash_registration",
            root="0x" + key.hex(),
            leaf_index=leaf_index,
            challenger=challenger,
            reward_wei=reward_wei,
        )
        return reward_wei
