"""
Registry Validation and Hardening Module

Error taxonomy, input validators and defensive primitives shared by the
operator ledger and both slashers:

1. Registry errors with stable codes, grouped by category
2. Input validation with sanitization (addresses, amounts)
3. Constant-time comparison
4. Reentrancy guard serializing every state-mutating call
5. Invariant checks on the collateral books

Security Model:
    - All inputs are untrusted until validated
    - All state mutations are atomic or rolled back
    - Recipients and adjudicators are untrusted callbacks

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hmac
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Type


# =============================================================================
# REGISTRY ERRORS
# =============================================================================

class RegistryError(Exception):
    """Base class for every rejected registry operation.

    `code` is stable across releases and safe to match on in tooling.
    `details` carries the offending values for logs.
    """

    code = "REGISTRY_ERROR"

    def __init__(self, message: str = "", **details: Any):
        self.message = message or self.__class__.__name__
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": {k: _loggable(v) for k, v in self.details.items()},
        }


def _loggable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return value


class InputValidationError(RegistryError):
    code = "INPUT_INVALID"


class AuthorizationError(RegistryError):
    code = "UNAUTHORIZED"


class TemporalError(RegistryError):
    code = "TEMPORAL"


class LifecycleError(RegistryError):
    code = "LIFECYCLE"


class ChallengeError(RegistryError):
    code = "CHALLENGE"


class AdjudicatorError(RegistryError):
    code = "ADJUDICATOR"


# Input validation

class InsufficientCollateral(InputValidationError):
    code = "INSUFFICIENT_COLLATERAL"


class DelayTooShort(InputValidationError):
    code = "DELAY_TOO_SHORT"


class TreeHeightMismatch(InputValidationError):
    code = "TREE_HEIGHT_MISMATCH"


class InvalidRoot(InputValidationError):
    code = "INVALID_ROOT"


class InvalidWithdrawalAddress(InputValidationError):
    code = "INVALID_WITHDRAWAL_ADDRESS"


class CollateralOverflow(InputValidationError):
    code = "COLLATERAL_OVERFLOW"


# Authorization

class WrongCaller(AuthorizationError):
    code = "WRONG_CALLER"


# Temporal

class WindowExpired(TemporalError):
    code = "FRAUD_PROOF_WINDOW_EXPIRED"


class WindowNotMet(TemporalError):
    code = "FRAUD_PROOF_WINDOW_NOT_MET"


class DelayNotMet(TemporalError):
    code = "UNREGISTRATION_DELAY_NOT_MET"


class DelegationExpired(TemporalError):
    code = "DELEGATION_EXPIRED"


# Lifecycle

class AlreadyRegistered(LifecycleError):
    code = "OPERATOR_ALREADY_REGISTERED"


class NotRegistered(LifecycleError):
    code = "NOT_REGISTERED"


class AlreadyUnregistered(LifecycleError):
    code = "ALREADY_UNREGISTERED"


class NotUnregistered(LifecycleError):
    code = "NOT_UNREGISTERED"


class NoCollateral(LifecycleError):
    code = "NO_COLLATERAL"


# Challenges

class ChallengeInvalid(ChallengeError):
    code = "FRAUD_PROOF_CHALLENGE_INVALID"


class NotRegisteredKey(ChallengeError):
    code = "NOT_REGISTERED_KEY"


class DelegationSignatureInvalid(ChallengeError):
    code = "DELEGATION_SIGNATURE_INVALID"


class InvalidDomainSeparator(ChallengeError):
    code = "INVALID_DOMAIN_SEPARATOR"


# Adjudicators

class UnknownAdjudicator(AdjudicatorError):
    code = "UNKNOWN_ADJUDICATOR"


class AdjudicatorReverted(AdjudicatorError):
    code = "ADJUDICATOR_REVERTED"


class NoCollateralSlashed(AdjudicatorError):
    code = "NO_COLLATERAL_SLASHED"


class AmountExceedsCollateral(AdjudicatorError):
    code = "SLASH_AMOUNT_EXCEEDS_COLLATERAL"


# Cross-cutting

class TransferFailed(RegistryError):
    code = "ETH_TRANSFER_FAILED"


class ReentrantCall(RegistryError):
    code = "REENTRANT_CALL"


class InvariantViolation(RegistryError):
    """Internal bookkeeping invariant violated."""
    code = "INVARIANT_VIOLATION"


# =============================================================================
# VALIDATION RESULT
# =============================================================================

class ValidationError(Exception):
    """One rejected field."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


@dataclass
class ValidationResult:
    """Outcome of a validator: the sanitized value, or the reasons it failed."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, field_name: str, message: str, value: Any = None) -> 'ValidationResult':
        return cls(is_valid=False, errors=[ValidationError(field_name, message, value)])

    def unwrap(self, error_cls: Optional[Type[RegistryError]] = None, **details: Any) -> Any:
        """Return the sanitized value or raise `error_cls` with the first reason."""
        if self.is_valid:
            return self.sanitized_value
        raise (error_cls or InputValidationError)(str(self.errors[0]), **details)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Validators for values that cross the registry boundary."""

    ADDRESS_PATTERN = re.compile(r'^0x[0-9a-f]{40}$')
    ZERO_ADDRESS = "0x" + "00" * 20

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "address") -> ValidationResult:
        """Validate a 20-byte account address.

        Accepts raw bytes or a 0x-prefixed hex string in any case; the
        sanitized value is lowercase hex. Surrounding whitespace and NUL
        bytes are stripped. The zero address is refused.
        """
        if isinstance(value, (bytes, bytearray)):
            if len(value) != 20:
                return ValidationResult.failure(field_name, "Must be exactly 20 bytes", value)
            value = "0x" + bytes(value).hex()
        if not isinstance(value, str):
            return ValidationResult.failure(
                field_name, f"Expected string, got {type(value).__name__}", value
            )

        candidate = value.replace('\x00', '').strip().lower()
        if not cls.ADDRESS_PATTERN.match(candidate):
            return ValidationResult.failure(
                field_name, "Must be valid Ethereum address (0x + 40 hex)", value
            )
        if candidate == cls.ZERO_ADDRESS:
            return ValidationResult.failure(field_name, "Zero address is not a valid recipient", value)
        return ValidationResult.success(candidate)

    @classmethod
    def validate_amount(
        cls,
        value: Any,
        field_name: str = "amount",
        min_value: int = 0,
        max_value: Optional[int] = None,
    ) -> ValidationResult:
        """Validate an integer amount in minor units (wei or gwei)."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure(
                field_name, f"Expected integer, got {type(value).__name__}", value
            )
        if value < min_value:
            return ValidationResult.failure(field_name, f"Must be >= {min_value}", value)
        if max_value is not None and value > max_value:
            return ValidationResult.failure(field_name, f"Must be <= {max_value}", value)
        return ValidationResult.success(value)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Compare byte strings in time independent of where they differ."""
        return hmac.compare_digest(a, b)


# =============================================================================
# REENTRANCY GUARD
# =============================================================================

class ReentrancyGuard:
    """Single-writer guard for registry state.

    Other threads block until the running operation finishes. The thread that
    holds the guard gets `ReentrantCall` if it tries to enter again, which is
    what happens when a payout recipient or an adjudicator calls back into the
    registry mid-operation.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: Optional[int] = None
        self._operation: Optional[str] = None

    @property
    def active_operation(self) -> Optional[str]:
        return self._operation

    def held_by_current_thread(self) -> bool:
        return self._owner == threading.get_ident()

    @contextmanager
    def enter(self, operation: str = "") -> Iterator[None]:
        me = threading.get_ident()
        if self._owner == me:
            raise ReentrantCall(
                f"Reentrant call to {operation or 'registry'} during {self._operation}",
                operation=operation,
                active=self._operation,
            )
        with self._lock:
            self._owner = me
            self._operation = operation
            try:
                yield
            finally:
                self._owner = None
                self._operation = None


# =============================================================================
# INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces collateral bookkeeping invariants."""

    @staticmethod
    def check_non_negative(field_name: str, value: int) -> None:
        """Ensure value is non-negative."""
        if value < 0:
            raise InvariantViolation(f"{field_name} cannot be negative: {value}")

    @staticmethod
    def check_balance_sufficient(
        available: int,
        required: int,
        field_name: str = "balance",
    ) -> None:
        """Ensure sufficient balance for operation."""
        if available < required:
            raise InvariantViolation(
                f"Insufficient {field_name}: have {available}, need {required}"
            )

    @staticmethod
    def check_conservation(field_name: str, inputs: int, outputs: int) -> None:
        """Ensure a distribution pays out exactly what it takes in."""
        if inputs != outputs:
            raise InvariantViolation(
                f"{field_name} not conserved: took {inputs}, paid {outputs}"
            )
