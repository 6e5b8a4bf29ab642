"""
stakereg.core — Operator Registry

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                         STAKE-BACKED REGISTRY                            │
    │                                                                          │
    │  SLASHING                                                                │
    │    fraud.py        Fraud proofs against badly signed registrations       │
    │    commitment.py   Adjudicated slashing of broken delegations            │
    │    adjudicator.py  Adjudicator interface, directory, delegations         │
    │                                                                          │
    │  STATE                                                                   │
    │    ledger.py       Operator records, register / unregister / claim       │
    │    vault.py        Escrowed collateral and payouts                       │
    │                                                                          │
    │  AMBIENT                                                                 │
    │    hardening.py    Error taxonomy, validators, reentrancy guard          │
    │    config.py       YAML / environment configuration                      │
    │    observability.py Structured logging and correlation ids               │
    │    events.py       Event bus and registry events                         │
    │    cli.py          Off-ledger tooling                                    │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Copyright © 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import registry modules on first access."""

    # Ledger exports
    if name in ("OperatorLedger", "Operator", "Registration", "LedgerClock",
                "registration_message"):
        from stakereg.core import ledger
        return getattr(ledger, name)

    # Vault exports
    if name in ("CollateralVault", "WEI_PER_GWEI"):
        from stakereg.core import vault
        return getattr(vault, name)

    # Slasher exports
    if name == "FraudProofSlasher":
        from stakereg.core import fraud
        return getattr(fraud, name)

    if name == "CommitmentSlasher":
        from stakereg.core import commitment
        return getattr(commitment, name)

    # Adjudicator exports
    if name in ("Adjudicator", "AdjudicatorDirectory", "Delegation",
                "SignedDelegation", "sign_delegation"):
        from stakereg.core import adjudicator
        return getattr(adjudicator, name)

    # Config exports
    if name in ("RegistryParameters", "ConfigManager", "get_config",
                "get_config_manager"):
        from stakereg.core import config
        return getattr(config, name)

    # Event exports
    if name == "EventBus":
        from stakereg.core import events
        return getattr(events, name)

    # Error exports
    if name in ("RegistryError", "ReentrancyGuard"):
        from stakereg.core import hardening
        return getattr(hardening, name)

    raise AttributeError(f"module 'stakereg.core' has no attribute '{name}'")


__all__ = [
    # Ledger
    "OperatorLedger",
    "Operator",
    "Registration",
    "LedgerClock",
    "registration_message",
    # Vault
    "CollateralVault",
    "WEI_PER_GWEI",
    # Slashers
    "FraudProofSlasher",
    "CommitmentSlasher",
    # Adjudicators
    "Adjudicator",
    "AdjudicatorDirectory",
    "Delegation",
    "SignedDelegation",
    "sign_delegation",
    # Config
    "RegistryParameters",
    "ConfigManager",
    "get_config",
    "get_config_manager",
    # Events
    "EventBus",
    # Errors
    "RegistryError",
    "ReentrancyGuard",
]
