"""
Operator Ledger

Stake-backed registry of key batches. An operator escrows collateral and
commits to an ordered list of (public key, registration signature) pairs
through a single Merkle root. Registration never checks signatures; the
fraud-proof window exists so anyone can prove a bad one afterwards.

Lifecycle of one record (keyed by its root):

    register ──► [fraud-proof window] ──► eligible for commitment slashing
        │                                          │
        └──► unregister ──► [unregistration delay] ──► claim (deleted)

    Any successful slash before the claim deletes the record.

State:
    Exactly one `Operator` per root. A record is created by `register` and
    removed by `claim_collateral` or one of the slashers; nothing else
    deletes it. Every mutation runs under the shared `ReentrancyGuard` and
    inside `atomic()`, which rolls back the operator table and the vault on
    any failure and publishes events only after commit.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from stakereg.accumulator import (
    MAX_TREE_HEIGHT,
    ZERO_HASH,
    TreeHeightError,
    build_root,
    coerce_hash,
    leaf_hash,
    verify_proof,
)
from stakereg.core.config import ConfigManager, RegistryParameters, get_config_manager
from stakereg.core.events import (
    CollateralAdded,
    CollateralClaimed,
    Event,
    EventBus,
    KeyRegistered,
    OperatorDeleted,
    OperatorRegistered,
    OperatorUnregistered,
)
from stakereg.core.hardening import (
    AlreadyRegistered,
    AlreadyUnregistered,
    CollateralOverflow,
    DelayNotMet,
    DelayTooShort,
    InputValidationError,
    InsufficientCollateral,
    InvalidRoot,
    InvalidWithdrawalAddress,
    InvariantChecker,
    InvariantViolation,
    NoCollateral,
    NotRegistered,
    NotUnregistered,
    ReentrancyGuard,
    RegistryError,
    TreeHeightMismatch,
    Validators,
    WrongCaller,
)
from stakereg.core.observability import (
    RegistryLayer,
    correlation_scope,
    get_correlation_id,
    get_logger,
)
from stakereg.core.vault import WEI_PER_GWEI, CollateralVault
from stakereg.signing import SignatureGateway, get_gateway

UINT64_MAX = 2**64 - 1


# =============================================================================
# REGISTRATIONS
# =============================================================================

@dataclass(frozen=True)
class Registration:
    """One committed (public key, registration signature) pair."""
    public_key: bytes
    signature: bytes

    def leaf(self) -> bytes:
        return leaf_hash(self.public_key, self.signature)

    def to_dict(self) -> Dict[str, str]:
        return {
            "public_key": "0x" + self.public_key.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "Registration":
        return cls(
            public_key=_hex_bytes(data["public_key"]),
            signature=_hex_bytes(data["signature"]),
        )

    @classmethod
    def coerce(cls, value: Union["Registration", Tuple[bytes, bytes], Dict[str, str]]) -> "Registration":
        if isinstance(value, Registration):
            return value
        if isinstance(value, dict):
            return cls.from_dict(value)
        public_key, signature = value
        return cls(bytes(public_key), bytes(signature))


def _hex_bytes(value: str) -> bytes:
    s = value.strip()
    if s.startswith(("0x", "0X")):
        s = s[2:]
    return bytes.fromhex(s)


def registration_message(withdrawal_address: str, unregistration_delay: int) -> bytes:
    """Bytes every key in a batch signs: 20-byte address || uint64 delay (big-endian)."""
    address = Validators.validate_address(withdrawal_address, "withdrawal_address").unwrap(
        InvalidWithdrawalAddress, withdrawal_address=str(withdrawal_address)
    )
    if not 0 <= unregistration_delay <= UINT64_MAX:
        raise InputValidationError("unregistration_delay must fit in uint64", unregistration_delay=unregistration_delay)
    return bytes.fromhex(address[2:]) + unregistration_delay.to_bytes(8, "big")


# =============================================================================
# OPERATOR RECORD
# =============================================================================

@dataclass
class Operator:
    """
    Stored state for one registration root.

    `unregistered_at` is 0 while the operator is active; heights start at 1
    so a stamped value is never 0.
    """
    withdrawal_address: str
    collateral_gwei: int
    registered_at: int
    unregistration_delay: int
    num_keys: int = 0
    unregistered_at: int = 0

    @property
    def collateral_wei(self) -> int:
        return self.collateral_gwei * WEI_PER_GWEI

    @property
    def is_unregistered(self) -> bool:
        return self.unregistered_at != 0

    def claimable_at(self) -> Optional[int]:
        """First height at which the collateral can be claimed."""
        if not self.is_unregistered:
            return None
        return self.unregistered_at + self.unregistration_delay

    def to_dict(self) -> Dict[str, Any]:
        return {
            "withdrawal_address": self.withdrawal_address,
            "collateral_gwei": self.collateral_gwei,
            "registered_at": self.registered_at,
            "unregistered_at": self.unregistered_at,
            "unregistration_delay": self.unregistration_delay,
            "num_keys": self.num_keys,
        }


# =============================================================================
# CLOCK
# =============================================================================

class LedgerClock:
    """Monotonic height and timestamp source.

    Windows and delays are compared against `height`; delegation expiry
    against `timestamp`.
    """

    def __init__(self, height: int = 1, timestamp: Optional[int] = None, seconds_per_block: int = 12):
        if height < 1:
            raise ValueError("height must be >= 1")
        if seconds_per_block < 0:
            raise ValueError("seconds_per_block must be >= 0")
        self._height = height
        self._timestamp = int(time.time()) if timestamp is None else timestamp
        self.seconds_per_block = seconds_per_block

    @property
    def height(self) -> int:
        return self._height

    @property
    def timestamp(self) -> int:
        return self._timestamp

    def advance(self, blocks: int = 1) -> int:
        """Move forward `blocks` heights and return the new height."""
        if blocks < 0:
            raise ValueError("clock cannot move backwards")
        self._height += blocks
        self._timestamp += blocks * self.seconds_per_block
        return self._height

    @classmethod
    def from_config(
        cls,
        manager: Optional[ConfigManager] = None,
        height: int = 1,
        timestamp: Optional[int] = None,
    ) -> "LedgerClock":
        """Clock stepping `timing.seconds_per_block` per height."""
        manager = manager or get_config_manager()
        return cls(height, timestamp, seconds_per_block=manager.get("timing.seconds_per_block"))

    def advance_to(self, height: int) -> int:
        return self.advance(height - self._height)

    def set_timestamp(self, timestamp: int) -> None:
        InvariantChecker.check_non_negative("timestamp delta", timestamp - self._timestamp)
        self._timestamp = timestamp


# =============================================================================
# OPERATION WRAPPER
# =============================================================================

def registry_operation(name: str) -> Callable:
    """Run a state-mutating method under the guard, with logging and timing.

    The owning object must expose `guard` and `_log`. Rejections are logged
    with the error code, other failures as a failed operation; both are
    re-raised unchanged.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args: Any, **kwargs: Any) -> Any:
            with correlation_scope():
                start = time.monotonic()
                try:
                    with self.guard.enter(name):
                        result = func(self, *args, **kwargs)
                except RegistryError as e:
                    self._log.rejected(name, e, **e.details)
                    raise
                except Exception:
                    self._log.operation(name, (time.monotonic() - start) * 1000, success=False)
                    raise
                self._log.operation(name, (time.monotonic() - start) * 1000)
                return result
        return wrapper
    return decorator


# =============================================================================
# OPERATOR LEDGER
# =============================================================================

class OperatorLedger:
    """
    Registry of operators keyed by registration root.

    Omitted collaborators come from the active configuration: parameters,
    the `signing.scheme` gateway and a clock at `timing.seconds_per_block`.

    Usage:
        ledger = OperatorLedger(RegistryParameters(), Ed25519Gateway())
        root = ledger.register(regs, "0xabc...", 7200, 10**18, caller="0xabc...")
        ledger.unregister(root, caller="0xabc...")
        ledger.clock.advance(7200)
        ledger.claim_collateral(root, caller="0xabc...")
    """

    def __init__(
        self,
        parameters: Optional[RegistryParameters] = None,
        gateway: Optional[SignatureGateway] = None,
        vault: Optional[CollateralVault] = None,
        clock: Optional[LedgerClock] = None,
        event_bus: Optional[EventBus] = None,
    ):
        manager = get_config_manager()
        self.parameters = parameters or RegistryParameters.from_config(manager)
        self.gateway = gateway or get_gateway(manager.get("signing.scheme"))
        self.vault = vault or CollateralVault()
        self.clock = clock or LedgerClock.from_config(manager)
        self.event_bus = event_bus or EventBus()
        self.guard = ReentrancyGuard()

        self._operators: Dict[bytes, Operator] = {}
        self._total_gwei = 0
        self._undo: Optional[Dict[bytes, Optional[Operator]]] = None
        self._pending_events: List[Event] = []
        self._tx_depth = 0
        self._log = get_logger("ledger", RegistryLayer.LEDGER)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """All-or-nothing block over the operator table and the vault.

        Nested blocks join the outermost one. Only records passed to
        `_journal()` are restored on rollback. Queued events are published
        once the outermost block commits and dropped if it rolls back.
        """
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield
            finally:
                self._tx_depth -= 1
            return

        vault_snapshot = self.vault.snapshot()
        total_gwei = self._total_gwei
        self._undo = {}
        self._tx_depth = 1
        try:
            yield
            self.check_solvency()
        except BaseException:
            for root, previous in self._undo.items():
                if previous is None:
                    self._operators.pop(root, None)
                else:
                    self._operators[root] = previous
            self._total_gwei = total_gwei
            self.vault.restore(vault_snapshot)
            self._pending_events = []
            raise
        else:
            self.vault.release(vault_snapshot)
        finally:
            self._tx_depth = 0
            self._undo = None

        events, self._pending_events = self._pending_events, []
        for event in events:
            self.event_bus.publish(event)

    def _journal(self, root: bytes) -> None:
        """Record the pre-transaction state of `root` before it changes."""
        if self._undo is None:
            raise InvariantViolation("operator mutated outside a transaction")
        if root not in self._undo:
            op = self._operators.get(root)
            self._undo[root] = replace(op) if op is not None else None

    def emit(self, event: Event) -> None:
        """Queue an event for publication when the current transaction commits."""
        event.correlation_id = event.correlation_id or get_correlation_id()
        if self._tx_depth:
            self._pending_events.append(event)
        else:
            self.event_bus.publish(event)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_operator(self, root: Any) -> Optional[Operator]:
        """Copy of the record stored under `root`, or None."""
        key = coerce_hash(root)
        op = self._operators.get(key) if key is not None else None
        return replace(op) if op is not None else None

    def require_operator(self, root: Any) -> Operator:
        """Live record stored under `root`; raises NotRegistered."""
        key = coerce_hash(root)
        op = self._operators.get(key) if key is not None else None
        if op is None:
            raise NotRegistered("no operator registered under this root", root=root if key is None else key)
        return op

    def operator_count(self) -> int:
        return len(self._operators)

    def roots(self) -> List[bytes]:
        return list(self._operators)

    def total_collateral_gwei(self) -> int:
        """Collateral booked across all records, kept as a running total."""
        return self._total_gwei

    def check_solvency(self) -> None:
        """Raise InvariantViolation unless escrow covers every record plus dust."""
        expected = self.total_collateral_gwei() * WEI_PER_GWEI + self.vault.dust_wei
        if self.vault.escrow_wei != expected:
            raise InvariantViolation(
                f"vault escrow {self.vault.escrow_wei} wei != booked {expected} wei"
            )

    def verify_merkle_proof(self, root: Any, leaf: Any, proof: Sequence[Any], index: int) -> int:
        """Collateral (gwei) behind `root` if `leaf` is committed at `index`, else 0."""
        key = coerce_hash(root)
        op = self._operators.get(key) if key is not None else None
        if op is None:
            return 0
        if not verify_proof(key, leaf, index, proof):
            return 0
        return op.collateral_gwei

    def verify_registration(self, registration: Registration, operator: Operator) -> bool:
        """True iff `registration` is correctly signed for `operator`'s terms."""
        message = registration_message(operator.withdrawal_address, operator.unregistration_delay)
        return self.gateway.verify(
            message,
            registration.signature,
            registration.public_key,
            self.parameters.registration_domain,
        )

    # -------------------------------------------------------------------------
    # Validation helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_amount(value: Any, field_name: str) -> int:
        return Validators.validate_amount(value, field_name).unwrap(**{field_name: repr(value)})

    @staticmethod
    def _same_address(caller: Any, address: str) -> bool:
        result = Validators.validate_address(caller, "caller")
        return result.is_valid and result.sanitized_value == address

    def _require_withdrawal_address(self, op: Operator, caller: Any) -> None:
        if not self._same_address(caller, op.withdrawal_address):
            raise WrongCaller("caller is not the withdrawal address", caller=str(caller))

    def _check_collateral_bound(self, collateral_gwei: int) -> None:
        if collateral_gwei > self.parameters.max_collateral_gwei:
            raise CollateralOverflow(
                "collateral exceeds the per-operator bound",
                collateral_gwei=collateral_gwei,
                max_collateral_gwei=self.parameters.max_collateral_gwei,
            )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @registry_operation("register")
    def register(
        self,
        registrations: Iterable[Any],
        withdrawal_address: str,
        unregistration_delay: int,
        escrowed_value: int,
        caller: Optional[str] = None,
        tree_height: Optional[int] = None,
    ) -> bytes:
        """
        Commit a batch of registrations and escrow `escrowed_value` wei.

        Signatures are not checked here. Returns the registration root.
        """
        params = self.parameters
        escrowed_value = self._require_amount(escrowed_value, "escrowed_value")
        if escrowed_value < params.min_collateral_wei:
            raise InsufficientCollateral(
                "escrowed value below minimum collateral",
                escrowed_value=escrowed_value,
                min_collateral_wei=params.min_collateral_wei,
            )

        unregistration_delay = self._require_amount(unregistration_delay, "unregistration_delay")
        if unregistration_delay < params.min_unregistration_delay:
            raise DelayTooShort(
                "unregistration delay below minimum",
                unregistration_delay=unregistration_delay,
                min_unregistration_delay=params.min_unregistration_delay,
            )
        if unregistration_delay > UINT64_MAX:
            raise InputValidationError("unregistration delay exceeds uint64", unregistration_delay=unregistration_delay)

        owner = Validators.validate_address(withdrawal_address, "withdrawal_address").unwrap(
            InvalidWithdrawalAddress, withdrawal_address=str(withdrawal_address)
        )

        try:
            regs = [Registration.coerce(r) for r in registrations]
        except (KeyError, TypeError, ValueError) as e:
            raise InputValidationError(f"malformed registration: {e}") from e
        if tree_height is not None and (
            isinstance(tree_height, bool)
            or not isinstance(tree_height, int)
            or not 0 <= tree_height <= MAX_TREE_HEIGHT
            or len(regs) > (1 << tree_height)
        ):
            raise TreeHeightMismatch(
                "registrations do not fit the requested tree height",
                num_keys=len(regs),
                tree_height=tree_height,
            )

        try:
            root = build_root([r.leaf() for r in regs], tree_height)
        except (TreeHeightError, ValueError) as e:
            raise InvalidRoot(f"cannot build registration root: {e}") from e
        if root == ZERO_HASH:
            raise InvalidRoot("registration root is degenerate", num_keys=len(regs))

        if root in self._operators:
            raise AlreadyRegistered("operator already registered", root=root)

        collateral_gwei = escrowed_value // WEI_PER_GWEI
        self._check_collateral_bound(collateral_gwei)

        with self.atomic():
            credited = self.vault.deposit(escrowed_value)
            InvariantChecker.check_conservation("deposit", collateral_gwei, credited)
            op = Operator(
                withdrawal_address=owner,
                collateral_gwei=collateral_gwei,
                registered_at=self.clock.height,
                unregistration_delay=unregistration_delay,
                num_keys=len(regs),
            )
            self._journal(root)
            self._operators[root] = op
            self._total_gwei += collateral_gwei

            root_hex = "0x" + root.hex()
            for i, reg in enumerate(regs):
                self.emit(KeyRegistered(
                    registration_root=root_hex,
                    leaf_index=i,
                    public_key="0x" + reg.public_key.hex(),
                ))
            self.emit(OperatorRegistered(
                registration_root=root_hex,
                withdrawal_address=owner,
                collateral_gwei=collateral_gwei,
                unregistration_delay=unregistration_delay,
                num_keys=len(regs),
                registered_at=op.registered_at,
            ))

        self._log.info(
            "Operator registered",
            operation="register",
            root=root_hex,
            num_keys=len(regs),
            collateral_gwei=collateral_gwei,
            caller=str(caller) if caller is not None else owner,
        )
        return root

    @registry_operation("add_collateral")
    def add_collateral(self, root: Any, value_wei: int, caller: Optional[str] = None) -> int:
        """Top up a live operator. Returns the new collateral in gwei."""
        op = self.require_operator(root)
        value_wei = self._require_amount(value_wei, "value_wei")
        if value_wei < WEI_PER_GWEI:
            raise InsufficientCollateral("top-up below 1 gwei", value_wei=value_wei)

        added_gwei = value_wei // WEI_PER_GWEI
        self._check_collateral_bound(op.collateral_gwei + added_gwei)

        with self.atomic():
            key = coerce_hash(root)
            self.vault.deposit(value_wei)
            self._journal(key)
            op.collateral_gwei += added_gwei
            self._total_gwei += added_gwei
            self.emit(CollateralAdded(
                registration_root="0x" + key.hex(),
                amount_gwei=added_gwei,
                collateral_gwei=op.collateral_gwei,
            ))
        return op.collateral_gwei

    @registry_operation("unregister")
    def unregister(self, root: Any, caller: str) -> None:
        """Start the unregistration delay. Only the withdrawal address may call."""
        op = self.require_operator(root)
        self._require_withdrawal_address(op, caller)
        if op.is_unregistered:
            raise AlreadyUnregistered("operator already unregistered", unregistered_at=op.unregistered_at)

        key = coerce_hash(root)
        with self.atomic():
            self._journal(key)
            op.unregistered_at = self.clock.height
            self.emit(OperatorUnregistered(
                registration_root="0x" + key.hex(),
                unregistered_at=op.unregistered_at,
            ))

    @registry_operation("claim_collateral")
    def claim_collateral(self, root: Any, caller: str) -> int:
        """Return the full collateral to the withdrawal address after the delay.

        Deletes the record. Returns the amount paid in wei.
        """
        op = self.require_operator(root)
        self._require_withdrawal_address(op, caller)
        if not op.is_unregistered:
            raise NotUnregistered("operator has not unregistered")
        claimable_at = op.claimable_at()
        if self.clock.height < claimable_at:
            raise DelayNotMet(
                "unregistration delay has not elapsed",
                height=self.clock.height,
                claimable_at=claimable_at,
            )
        if op.collateral_gwei == 0:
            raise NoCollateral("operator has no collateral")

        key = coerce_hash(root)
        amount_wei = op.collateral_wei
        with self.atomic():
            self.emit(CollateralClaimed(
                registration_root="0x" + key.hex(),
                withdrawal_address=op.withdrawal_address,
                amount_gwei=op.collateral_gwei,
            ))
            self.settle(key, [(op.withdrawal_address, amount_wei)], reason="claimed")

        self._log.info(
            "Collateral claimed",
            operation="claim_collateral",
            root="0x" + key.hex(),
            amount_wei=amount_wei,
        )
        return amount_wei

    def settle(self, root: bytes, payouts: List[Tuple[str, int]], reason: str) -> Operator:
        """Delete the record under `root` and distribute its collateral.

        Must run inside `atomic()` while holding the guard. `payouts` are
        (recipient, wei) pairs that must sum to the record's collateral.
        """
        if not self._tx_depth or not self.guard.held_by_current_thread():
            raise InvariantViolation("settle called outside a guarded transaction")
        self._journal(root)
        op = self._operators.pop(root)
        self._total_gwei -= op.collateral_gwei
        InvariantChecker.check_conservation(
            "collateral", op.collateral_wei, sum(amount for _, amount in payouts)
        )
        for recipient, amount in payouts:
            self.vault.pay(recipient, amount)
        self.emit(OperatorDeleted(registration_root="0x" + root.hex(), reason=reason))
        return op
