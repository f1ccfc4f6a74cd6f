"""
Charity Ledger: donation ledger core

Named fundraising entities ("charities") receive and disburse value through
isolated, program-owned vaults, and every contribution leaves an immutable
donation receipt.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CHARITY LEDGER                              │
    │                                                                      │
    │  SURFACE                                                             │
    │    transaction.py   Signed envelopes, replay guard, typed results    │
    │    cli.py           config / keygen / derive / run                   │
    │                                                                      │
    │  CORE                                                                │
    │    program.py       Six instruction handlers and queries             │
    │    validation.py    Authorization, lifecycle and bounds predicates   │
    │    events.py        Append-only event log with subscribers           │
    │    audit.py         Conservation checks against event history        │
    │                                                                      │
    │  FOUNDATION                                                          │
    │    derivation.py    Off-curve address derivation                     │
    │    state.py         Fixed-width Charity / Donation records           │
    │    runtime.py       Account store, transfers, atomic transactions    │
    │    keys.py          Addresses, base58, Ed25519 keypairs              │
    │    config.py        YAML + env configuration, JSON Schema checked    │
    │    observability.py Structured logging with correlation IDs          │
    └─────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Custody Isolation: a charity's metadata record and its funds live in
    separate accounts. The vault address has no private key; only the
    program can debit it.

    Validate, Then Mutate: every handler loads, checks and writes inside one
    runtime transaction. No write happens before the last check passes, and
    concurrent instructions on a charity never interleave.

    Typed Failures: every rejection carries its specific error kind and
    code, never a generic failure.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy import ledger modules on first access."""

    if name in ("Address", "Keypair", "verify_signature", "b58encode", "b58decode"):
        from charity_ledger import keys
        return getattr(keys, name)

    if name in ("PROGRAM_ID", "derive", "create_address", "verify_derivation",
                "charity_address", "vault_address", "donation_address"):
        from charity_ledger import derivation
        return getattr(derivation, name)

    if name in ("Charity", "Donation", "charity_space"):
        from charity_ledger import state
        return getattr(state, name)

    if name in ("Account", "Runtime", "Clock", "ManualClock", "SYSTEM_PROGRAM_ID"):
        from charity_ledger import runtime
        return getattr(runtime, name)

    if name in ("Validator", "checked_add", "checked_sub"):
        from charity_ledger import validation
        return getattr(validation, name)

    if name == "CharityProgram":
        from charity_ledger.program import CharityProgram
        return CharityProgram

    if name in ("Event", "EventLog", "CharityCreated", "DonationMade", "Withdrawn",
                "CharityUpdated", "PauseToggled", "CharityDeleted"):
        from charity_ledger import events
        return getattr(events, name)

    if name in ("Transaction", "Processor", "InstructionResult", "NonceRegistry"):
        from charity_ledger import transaction
        return getattr(transaction, name)

    if name in ("AuditReport", "audit_charity"):
        from charity_ledger import audit
        return getattr(audit, name)

    if name in ("LedgerConfig", "load_config"):
        from charity_ledger import config
        return getattr(config, name)

    if name in ("LedgerError", "ErrorKind", "InvariantViolation", "ConfigError"):
        from charity_ledger import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'charity_ledger' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Identity and addressing
    "Address",
    "Keypair",
    "PROGRAM_ID",
    "derive",
    "charity_address",
    "vault_address",
    "donation_address",
    # State and runtime
    "Charity",
    "Donation",
    "Account",
    "Runtime",
    "ManualClock",
    # Core
    "CharityProgram",
    "Validator",
    "EventLog",
    "Transaction",
    "Processor",
    "InstructionResult",
    "audit_charity",
    # Configuration and errors
    "LedgerConfig",
    "load_config",
    "LedgerError",
    "ErrorKind",
]
