import pytest

from stakereg.core.hardening import InputValidationError, InvariantViolation, TransferFailed
from stakereg.core.vault import WEI_PER_GWEI, CollateralVault

from conftest import CHALLENGER, ETH, OPERATOR


def test_deposit_splits_gwei_and_dust():
    vault = CollateralVault()
    assert vault.deposit(3 * WEI_PER_GWEI + 17) == 3
    assert vault.escrow_wei == 3 * WEI_PER_GWEI + 17
    assert vault.dust_wei == 17


def test_pay_moves_escrow_to_recipient():
    vault = CollateralVault()
    vault.deposit(ETH)
    vault.pay("0x" + "AB" * 20, ETH // 4)
    assert vault.balance_of("0x" + "ab" * 20) == ETH // 4
    assert vault.escrow_wei == ETH - ETH // 4
    assert vault.stats() == {
        "escrow_wei": ETH - ETH // 4,
        "dust_wei": 0,
        "paid_wei": ETH // 4,
        "recipients": 1,
    }


def test_pay_more_than_escrow():
    vault = CollateralVault()
    vault.deposit(10)
    with pytest.raises(InvariantViolation):
        vault.pay(OPERATOR, 11)
    with pytest.raises(InvariantViolation):
        vault.pay(OPERATOR, -1)


def test_zero_payout_skips_hook():
    vault = CollateralVault()
    calls = []
    vault.bind_recipient(OPERATOR, lambda r, a: calls.append(a))
    vault.pay(OPERATOR, 0)
    assert calls == []


def test_hook_sees_credited_amount():
    vault = CollateralVault()
    vault.deposit(ETH)
    calls = []
    vault.bind_recipient(CHALLENGER, lambda r, a: calls.append((r, a, vault.balance_of(r))))
    vault.pay(CHALLENGER, 5)
    assert calls == [(CHALLENGER, 5, 5)]


def test_refusing_hook_raises_transfer_failed():
    vault = CollateralVault()
    vault.deposit(ETH)

    def refuse(recipient, amount):
        raise RuntimeError("revert")

    vault.bind_recipient(OPERATOR, refuse)
    with pytest.raises(TransferFailed) as exc_info:
        vault.pay(OPERATOR, 1)
    assert exc_info.value.details["cause"] == "RuntimeError"
    assert isinstance(exc_info.value.__cause__, RuntimeError)

    vault.unbind_recipient(OPERATOR)
    vault.pay(OPERATOR, 1)


def test_snapshot_and_restore():
    vault = CollateralVault()
    vault.deposit(ETH + 3)
    snap = vault.snapshot()
    vault.pay(OPERATOR, ETH)
    vault.deposit(7)
    vault.restore(snap)
    assert vault.escrow_wei == ETH + 3
    assert vault.dust_wei == 3
    assert vault.balance_of(OPERATOR) == 0


def test_restore_only_touches_journaled_recipients():
    vault = CollateralVault()
    vault.deposit(3 * ETH)
    vault.pay(CHALLENGER, ETH)
    snap = vault.snapshot()
    vault.pay(CHALLENGER, 5)
    vault.pay(OPERATOR, ETH)
    assert snap.balances == {CHALLENGER: ETH, OPERATOR: None}
    vault.restore(snap)
    assert vault.balance_of(CHALLENGER) == ETH
    assert vault.balance_of(OPERATOR) == 0
    assert vault.escrow_wei == 2 * ETH


def test_release_keeps_changes_and_closes_snapshot():
    vault = CollateralVault()
    vault.deposit(ETH)
    snap = vault.snapshot()
    with pytest.raises(InvariantViolation):
        vault.snapshot()
    vault.pay(OPERATOR, ETH)
    vault.release(snap)
    assert vault.balance_of(OPERATOR) == ETH
    vault.snapshot()


def test_bind_rejects_bad_address():
    with pytest.raises(InputValidationError):
        CollateralVault().bind_recipient("0xnope", lambda r, a: None)
