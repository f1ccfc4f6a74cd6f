"""
Charity Ledger Error Taxonomy

Every rejected instruction surfaces one of the errors below. Errors are
grouped by kind so callers can tell "fix your input" apart from
"insufficient balance" apart from "not authorized":

    AUTHORIZATION   caller is not allowed to perform the instruction
    VALIDATION      malformed or redundant input, rejected before any state touch
    STATE           instruction invalid for the entity's lifecycle state
    FINANCIAL       would violate custody invariants
    ARITHMETIC      checked u64 math failed
    ADDRESSING      derived address problems

Each error class carries a stable string ``code`` and a numeric ``number``
(6000-based, never reused) so results can be serialized without losing the
specific failure.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Type


class ErrorKind(Enum):
    """Error families."""
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    STATE = "state"
    FINANCIAL = "financial"
    ARITHMETIC = "arithmetic"
    ADDRESSING = "addressing"


# =============================================================================
# BASE
# =============================================================================

class LedgerError(Exception):
    """Base class for every typed ledger failure."""

    code: str = "LEDGER_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION
    number: int = 6000

    def __init__(self, message: str = "", **details: Any):
        self.message = message or self.__class__.__name__
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "number": self.number,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


# =============================================================================
# AUTHORIZATION
# =============================================================================

class Unauthorized(LedgerError):
    """Caller is not the recorded authority (or cannot debit the source)."""
    code = "UNAUTHORIZED"
    kind = ErrorKind.AUTHORIZATION
    number = 6001


class InvalidSignature(LedgerError):
    """Transaction signature does not verify against the signer."""
    code = "INVALID_SIGNATURE"
    kind = ErrorKind.AUTHORIZATION
    number = 6002


class ReplayedTransaction(LedgerError):
    """Transaction nonce was already consumed."""
    code = "REPLAYED_TRANSACTION"
    kind = ErrorKind.AUTHORIZATION
    number = 6003


# =============================================================================
# VALIDATION
# =============================================================================

class InvalidLength(LedgerError):
    code = "INVALID_LENGTH"
    kind = ErrorKind.VALIDATION
    number = 6010


class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"
    kind = ErrorKind.VALIDATION
    number = 6011


class NoChange(LedgerError):
    """Requested value equals the current one."""
    code = "NO_CHANGE"
    kind = ErrorKind.VALIDATION
    number = 6012


class InvalidRecipient(LedgerError):
    code = "INVALID_RECIPIENT"
    kind = ErrorKind.VALIDATION
    number = 6013


class UnknownInstruction(LedgerError):
    code = "UNKNOWN_INSTRUCTION"
    kind = ErrorKind.VALIDATION
    number = 6014


class MalformedInstruction(LedgerError):
    """Instruction arguments are missing, unexpected or of the wrong shape."""
    code = "MALFORMED_INSTRUCTION"
    kind = ErrorKind.VALIDATION
    number = 6015


# =============================================================================
# STATE
# =============================================================================

class EntityDeleted(LedgerError):
    code = "ENTITY_DELETED"
    kind = ErrorKind.STATE
    number = 6020


class DonationsPaused(LedgerError):
    code = "DONATIONS_PAUSED"
    kind = ErrorKind.STATE
    number = 6021


class AccountNotFound(LedgerError):
    code = "ACCOUNT_NOT_FOUND"
    kind = ErrorKind.STATE
    number = 6022


# =============================================================================
# FINANCIAL
# =============================================================================

class InsufficientFunds(LedgerError):
    code = "INSUFFICIENT_FUNDS"
    kind = ErrorKind.FINANCIAL
    number = 6030


class InsufficientFundsForReserve(LedgerError):
    code = "INSUFFICIENT_FUNDS_FOR_RESERVE"
    kind = ErrorKind.FINANCIAL
    number = 6031


# =============================================================================
# ARITHMETIC
# =============================================================================

class ArithmeticOverflow(LedgerError):
    code = "ARITHMETIC_OVERFLOW"
    kind = ErrorKind.ARITHMETIC
    number = 6040


class ArithmeticUnderflow(LedgerError):
    code = "ARITHMETIC_UNDERFLOW"
    kind = ErrorKind.ARITHMETIC
    number = 6041


# =============================================================================
# ADDRESSING
# =============================================================================

class AddressDerivationExhausted(LedgerError):
    code = "ADDRESS_DERIVATION_EXHAUSTED"
    kind = ErrorKind.ADDRESSING
    number = 6050


class AddressMismatch(LedgerError):
    code = "ADDRESS_MISMATCH"
    kind = ErrorKind.ADDRESSING
    number = 6051


class InvalidSeeds(LedgerError):
    code = "INVALID_SEEDS"
    kind = ErrorKind.ADDRESSING
    number = 6052


class AccountAlreadyExists(LedgerError):
    code = "ACCOUNT_ALREADY_EXISTS"
    kind = ErrorKind.ADDRESSING
    number = 6053


# =============================================================================
# NON-INSTRUCTION FAILURES
# =============================================================================

class InvariantViolation(Exception):
    """A ledger invariant does not hold (raised by audits, never by handlers)."""

    def __init__(self, violations: List[str]):
        self.violations = violations
        super().__init__("; ".join(violations))


class ConfigError(Exception):
    """Configuration error."""
    pass


ALL_ERRORS: List[Type[LedgerError]] = [
    Unauthorized,
    InvalidSignature,
    ReplayedTransaction,
    InvalidLength,
    InvalidAmount,
    NoChange,
    InvalidRecipient,
    UnknownInstruction,
    MalformedInstruction,
    EntityDeleted,
    DonationsPaused,
    AccountNotFound,
    InsufficientFunds,
    InsufficientFundsForReserve,
    ArithmeticOverflow,
    ArithmeticUnderflow,
    AddressDerivationExhausted,
    AddressMismatch,
    InvalidSeeds,
    AccountAlreadyExists,
]

_BY_CODE: Dict[str, Type[LedgerError]] = {cls.code: cls for cls in ALL_ERRORS}


def error_for_code(code: str) -> Optional[Type[LedgerError]]:
    """Look up an error class by its stable code."""
    return _BY_CODE.get(code)
