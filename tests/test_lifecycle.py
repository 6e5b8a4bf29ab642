"""
End-to-end operator lifecycles across the ledger and both slashers.
"""

import pytest

from stakereg.accumulator import build_proof
from stakereg.core.adjudicator import Delegation, sign_delegation
from stakereg.core.commitment import CommitmentSlasher
from stakereg.core.fraud import FraudProofSlasher
from stakereg.core.hardening import (
    DelayNotMet,
    NotRegistered,
    NotUnregistered,
    TransferFailed,
    WindowNotMet,
)
from stakereg.core.ledger import Registration

from conftest import ADJUDICATOR, CHALLENGER, DELAY, ETH, GENESIS_TIME, GWEI, OPERATOR, STRANGER, WINDOW


@pytest.fixture
def fraud(ledger):
    return FraudProofSlasher(ledger)


@pytest.fixture
def commitment(ledger, directory):
    return CommitmentSlasher(ledger, directory)


def _signed_delegation(gateway, keypair, adjudicator):
    delegation = Delegation(
        proposer_key=keypair.public_key,
        delegate_key=b"\x99" * 32,
        adjudicator=ADJUDICATOR,
        valid_until=GENESIS_TIME + 10**6,
    )
    return sign_delegation(gateway, delegation, keypair.secret_key, adjudicator.domain_separator())


def test_claim_without_unregistering_fails(ledger, make_batch, params, clock):
    root = ledger.register(
        make_batch(count=1, delay=params.min_unregistration_delay),
        OPERATOR,
        params.min_unregistration_delay,
        params.min_collateral_wei,
        caller=OPERATOR,
    )
    with pytest.raises(NotUnregistered):
        ledger.claim_collateral(root, OPERATOR)
    clock.advance(10 * DELAY)
    with pytest.raises(NotUnregistered):
        ledger.claim_collateral(root, OPERATOR)


def test_signature_over_other_address_is_slashable(ledger, make_batch, fraud, params):
    batch = make_batch(address=STRANGER)
    root = ledger.register(batch, OPERATOR, DELAY, 3 * ETH, caller=OPERATOR)
    leaves = [r.leaf() for r in batch]

    reward = fraud.slash_registration(root, batch[0], build_proof(leaves, 0), 0, CHALLENGER)

    assert reward == params.min_collateral_wei
    assert ledger.vault.balance_of(CHALLENGER) == params.min_collateral_wei
    assert ledger.vault.balance_of(OPERATOR) == 3 * ETH - params.min_collateral_wei
    assert ledger.get_operator(root) is None


def test_commitment_slash_after_window(ledger, make_batch, commitment, gateway, keys, adjudicator, clock):
    batch = make_batch()
    root = ledger.register(batch, OPERATOR, DELAY, ETH, caller=OPERATOR)
    leaves = [r.leaf() for r in batch]
    signed = _signed_delegation(gateway, keys[3], adjudicator)
    adjudicator.verdict = (GWEI // 4, GWEI // 10)

    with pytest.raises(WindowNotMet):
        commitment.slash_commitment(root, batch[3].signature, build_proof(leaves, 3), 3, signed, b"e", CHALLENGER)

    clock.advance(WINDOW)
    commitment.slash_commitment(root, batch[3].signature, build_proof(leaves, 3), 3, signed, b"e", CHALLENGER)

    assert ledger.vault.balance_of(CHALLENGER) == (GWEI // 4 + GWEI // 10) * GWEI
    assert ledger.vault.balance_of(OPERATOR) == ETH - (GWEI // 4 + GWEI // 10) * GWEI
    assert ledger.operator_count() == 0


class TestRefusingWithdrawalAddress:
    """A withdrawal address that refuses value blocks every exit and leaves the record intact."""

    @pytest.fixture
    def stuck(self, ledger, make_batch):
        batch = make_batch(bad=(0,))
        root = ledger.register(batch, OPERATOR, DELAY, ETH, caller=OPERATOR)

        def refuse(recipient, amount):
            raise RuntimeError("fallback reverts")

        ledger.vault.bind_recipient(OPERATOR, refuse)
        return root, batch, [r.leaf() for r in batch]

    def _assert_intact(self, ledger, root, before):
        assert ledger.get_operator(root) == before
        assert ledger.vault.escrow_wei == ETH
        assert ledger.vault.total_paid_wei == 0
        ledger.check_solvency()

    def test_claim(self, ledger, stuck, clock):
        root = stuck[0]
        ledger.unregister(root, OPERATOR)
        clock.advance(DELAY)
        before = ledger.get_operator(root)
        with pytest.raises(TransferFailed):
            ledger.claim_collateral(root, OPERATOR)
        self._assert_intact(ledger, root, before)

    def test_fraud_slash(self, ledger, stuck, fraud):
        root, batch, leaves = stuck
        before = ledger.get_operator(root)
        with pytest.raises(TransferFailed):
            fraud.slash_registration(root, batch[0], build_proof(leaves, 0), 0, CHALLENGER)
        self._assert_intact(ledger, root, before)

    def test_commitment_slash(self, ledger, stuck, commitment, gateway, keys, adjudicator, clock):
        root, batch, leaves = stuck
        clock.advance(WINDOW)
        signed = _signed_delegation(gateway, keys[1], adjudicator)
        before = ledger.get_operator(root)
        with pytest.raises(TransferFailed):
            commitment.slash_commitment(root, batch[1].signature, build_proof(leaves, 1), 1, signed, b"e", CHALLENGER)
        self._assert_intact(ledger, root, before)


class TestTerminalStates:

    def test_claimed_record_cannot_be_slashed(self, ledger, make_batch, fraud, clock):
        batch = make_batch(bad=(1,))
        root = ledger.register(batch, OPERATOR, DELAY, ETH, caller=OPERATOR)
        leaves = [r.leaf() for r in batch]
        ledger.unregister(root, OPERATOR)
        # Claim opens after the delay, which outlasts the fraud window.
        clock.advance(WINDOW)
        with pytest.raises(DelayNotMet):
            ledger.claim_collateral(root, OPERATOR)
        clock.advance(DELAY - WINDOW)
        ledger.claim_collateral(root, OPERATOR)
        with pytest.raises(NotRegistered):
            fraud.slash_registration(root, batch[1], build_proof(leaves, 1), 1, CHALLENGER)

    def test_slashed_record_cannot_be_claimed(self, ledger, make_batch, fraud, clock):
        batch = make_batch(bad=(1,))
        root = ledger.register(batch, OPERATOR, DELAY, ETH, caller=OPERATOR)
        leaves = [r.leaf() for r in batch]
        ledger.unregister(root, OPERATOR)
        fraud.slash_registration(root, batch[1], build_proof(leaves, 1), 1, CHALLENGER)
        clock.advance(DELAY)
        with pytest.raises(NotRegistered):
            ledger.claim_collateral(root, OPERATOR)

    def test_root_can_be_reused_after_deletion(self, ledger, make_batch, clock):
        batch = make_batch()
        root = ledger.register(batch, OPERATOR, DELAY, ETH, caller=OPERATOR)
        ledger.unregister(root, OPERATOR)
        clock.advance(DELAY)
        ledger.claim_collateral(root, OPERATOR)
        assert ledger.register(batch, OPERATOR, DELAY, ETH, caller=OPERATOR) == root
        assert ledger.get_operator(root).registered_at == clock.height


def test_value_is_conserved_across_many_operators(ledger, gateway, clock, fraud):
    paid_in = 0
    roots = []
    for n in range(1, 6):
        kp = gateway.generate_keypair(bytes([0x40 + n]) * 32)
        reg = Registration(kp.public_key, b"\x00" * 64)
        value = n * ETH + n
        roots.append((ledger.register([reg], OPERATOR, DELAY, value, caller=OPERATOR), reg))
        paid_in += value

    root, reg = roots[0]
    fraud.slash_registration(root, reg, [], 0, CHALLENGER)
    for root, _ in roots[1:3]:
        ledger.unregister(root, OPERATOR)
    clock.advance(DELAY)
    for root, _ in roots[1:3]:
        ledger.claim_collateral(root, OPERATOR)

    ledger.check_solvency()
    assert ledger.vault.escrow_wei + ledger.vault.total_paid_wei == paid_in
    assert ledger.operator_count() == 2
