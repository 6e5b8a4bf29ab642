"""
Collateral Vault

Holds the value escrowed by registered operators and pays it out on claim
or slash. Amounts here are wei; the ledger books collateral in gwei and the
vault keeps the sub-gwei remainder of every deposit as unattributed dust.

Solvency:
    escrow_wei == sum(collateral_gwei) * 10**9 + dust_wei

Payouts credit the recipient's balance and then invoke the recipient hook
bound to that address, if any. A hook stands in for the receiving contract:
it may refuse the transfer by raising, or try to call back into the
registry. Either way the transfer fails with `TransferFailed` and the
caller's transaction is rolled back.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from stakereg.core.hardening import (
    InvariantChecker,
    InvariantViolation,
    RegistryError,
    TransferFailed,
    Validators,
)
from stakereg.core.observability import RegistryLayer, get_logger

WEI_PER_GWEI = 10**9

RecipientHook = Callable[[str, int], None]


@dataclass(frozen=True)
class VaultSnapshot:
    """Rollback point for the vault books.

    `balances` fills in as payouts happen: prior balance of each recipient
    credited since the snapshot, None where there was none.
    """
    escrow_wei: int
    dust_wei: int
    balances: Dict[str, Optional[int]] = field(default_factory=dict)


class CollateralVault:
    """Escrow account for operator collateral."""

    def __init__(self):
        self._escrow_wei = 0
        self._dust_wei = 0
        self._balances: Dict[str, int] = {}
        self._hooks: Dict[str, RecipientHook] = {}
        self._open: Optional[VaultSnapshot] = None
        self._lock = threading.RLock()
        self._log = get_logger("vault", RegistryLayer.VAULT)

    @property
    def escrow_wei(self) -> int:
        return self._escrow_wei

    @property
    def dust_wei(self) -> int:
        return self._dust_wei

    def balance_of(self, address: str) -> int:
        """Wei credited to `address` by claims and slashes."""
        return self._balances.get(address.lower(), 0)

    @property
    def total_paid_wei(self) -> int:
        return sum(self._balances.values())

    # -------------------------------------------------------------------------
    # Recipient hooks
    # -------------------------------------------------------------------------

    def bind_recipient(self, address: str, hook: RecipientHook) -> None:
        """Invoke `hook(address, amount_wei)` on every payout to `address`."""
        recipient = Validators.validate_address(address, "recipient").unwrap(recipient=str(address))
        with self._lock:
            self._hooks[recipient] = hook

    def unbind_recipient(self, address: str) -> None:
        with self._lock:
            self._hooks.pop(address.lower(), None)

    # -------------------------------------------------------------------------
    # Books
    # -------------------------------------------------------------------------

    def deposit(self, value_wei: int) -> int:
        """Escrow `value_wei` and return the whole gwei it is worth."""
        InvariantChecker.check_non_negative("deposit", value_wei)
        gwei, dust = divmod(value_wei, WEI_PER_GWEI)
        with self._lock:
            self._escrow_wei += value_wei
            self._dust_wei += dust
        return gwei

    def pay(self, recipient: str, amount_wei: int) -> None:
        """Release `amount_wei` from escrow to `recipient`.

        Zero amounts are a no-op and do not invoke the hook.
        """
        InvariantChecker.check_non_negative("payout", amount_wei)
        if amount_wei == 0:
            return
        recipient = recipient.lower()
        with self._lock:
            InvariantChecker.check_balance_sufficient(self._escrow_wei, amount_wei, "escrow")
            self._escrow_wei -= amount_wei
            if self._open is not None and recipient not in self._open.balances:
                self._open.balances[recipient] = self._balances.get(recipient)
            self._balances[recipient] = self._balances.get(recipient, 0) + amount_wei
            hook = self._hooks.get(recipient)

        if hook is None:
            return
        try:
            hook(recipient, amount_wei)
        except InvariantViolation:
            raise
        except Exception as e:
            self._log.warning(
                "Recipient rejected transfer",
                operation="pay",
                recipient=recipient,
                amount_wei=amount_wei,
                cause=type(e).__name__,
            )
            code = e.code if isinstance(e, RegistryError) else ""
            raise TransferFailed(
                f"transfer of {amount_wei} wei to {recipient} failed",
                recipient=recipient,
                amount_wei=amount_wei,
                cause=code or type(e).__name__,
            ) from e

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def snapshot(self) -> VaultSnapshot:
        """Open a rollback point. Only one may be open at a time."""
        with self._lock:
            if self._open is not None:
                raise InvariantViolation("vault snapshot already open")
            self._open = VaultSnapshot(escrow_wei=self._escrow_wei, dust_wei=self._dust_wei)
            return self._open

    def restore(self, snapshot: VaultSnapshot) -> None:
        with self._lock:
            self._escrow_wei = snapshot.escrow_wei
            self._dust_wei = snapshot.dust_wei
            for recipient, previous in snapshot.balances.items():
                if previous is None:
                    self._balances.pop(recipient, None)
                else:
                    self._balances[recipient] = previous
            if self._open is snapshot:
                self._open = None

    def release(self, snapshot: VaultSnapshot) -> None:
        """Close a rollback point without restoring it."""
        with self._lock:
            if self._open is snapshot:
                self._open = None

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "escrow_wei": self._escrow_wei,
                "dust_wei": self._dust_wei,
                "paid_wei": sum(self._balances.values()),
                "recipients": len(self._balances),
            }
