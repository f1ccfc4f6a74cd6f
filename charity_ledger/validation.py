"""
Charity Ledger Validation

Pure predicates gating every mutation. Each ``require_*`` method raises the
matching typed error and returns nothing (or the normalized value), so a
handler can run all of its checks before it touches any state.

Limits come from the ``LedgerConfig`` handed in at construction; nothing
here reads module globals.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Optional

from charity_ledger.config import LedgerConfig
from charity_ledger.errors import (
    AddressMismatch,
    ArithmeticOverflow,
    ArithmeticUnderflow,
    DonationsPaused,
    EntityDeleted,
    InsufficientFunds,
    InsufficientFundsForReserve,
    InvalidAmount,
    InvalidLength,
    InvalidRecipient,
    MalformedInstruction,
    NoChange,
    Unauthorized,
)
from charity_ledger.keys import Address
from charity_ledger.state import U64_MAX, Charity


# =============================================================================
# CHECKED ARITHMETIC
# =============================================================================

def checked_add(a: int, b: int) -> int:
    """Add two u64 values; raises ArithmeticOverflow past 2**64 - 1."""
    result = a + b
    if result > U64_MAX:
        raise ArithmeticOverflow(f"{a} + {b} exceeds u64", lhs=a, rhs=b)
    return result


def checked_sub(a: int, b: int) -> int:
    """Subtract two u64 values; raises ArithmeticUnderflow below zero."""
    if b > a:
        raise ArithmeticUnderflow(f"{a} - {b} is negative", lhs=a, rhs=b)
    return a - b


def utf8_len(value: str) -> int:
    return len(value.encode("utf-8"))


# =============================================================================
# VALIDATOR
# =============================================================================

class Validator:
    """Authorization, lifecycle and bounds checks for charity instructions."""

    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig()

    # -- authorization --------------------------------------------------------

    def require_authority(self, charity: Charity, caller: Address) -> None:
        if caller != charity.authority:
            raise Unauthorized(
                "caller is not the charity authority",
                caller=caller,
                authority=charity.authority,
            )

    # -- lifecycle ------------------------------------------------------------

    def require_active(self, charity: Charity) -> None:
        if charity.deleted_at is not None:
            raise EntityDeleted(f"charity {charity.name!r} was deleted", deleted_at=charity.deleted_at)

    def require_not_paused(self, charity: Charity) -> None:
        if charity.paused:
            raise DonationsPaused(f"donations to {charity.name!r} are paused")

    # -- bounds ---------------------------------------------------------------

    def _require_text(self, value: Any, field: str, limit: int) -> str:
        if not isinstance(value, str):
            raise InvalidLength(f"{field} must be a string", field=field)
        length = utf8_len(value)
        if length < 1 or length > limit:
            raise InvalidLength(
                f"{field} must be 1..{limit} bytes, got {length}",
                field=field,
                length=length,
                limit=limit,
            )
        return value

    def require_name(self, name: Any) -> str:
        return self._require_text(name, "name", self.config.name_max)

    def require_description(self, description: Any) -> str:
        return self._require_text(description, "description", self.config.description_max)

    def require_positive_amount(self, amount: Any) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(f"amount must be an integer, got {type(amount).__name__}")
        if amount <= 0:
            raise InvalidAmount(f"amount must be positive, got {amount}", amount=amount)
        if amount > U64_MAX:
            raise InvalidAmount("amount exceeds u64", amount=amount)
        return amount

    def require_bool(self, value: Any, field: str) -> bool:
        """Only a real bool; ``"false"`` or ``0`` from an envelope is malformed."""
        if not isinstance(value, bool):
            raise MalformedInstruction(
                f"{field} must be a boolean, got {type(value).__name__}",
                field=field,
            )
        return value

    def require_address_arg(self, value: Any, role: str) -> Address:
        try:
            return Address.coerce(value)
        except (TypeError, ValueError) as e:
            raise MalformedInstruction(f"{role}: {e}", role=role) from e

    def require_changed(self, current: Any, requested: Any, field: str) -> None:
        if current == requested:
            raise NoChange(f"{field} already set to {requested!r}", field=field)

    def require_address(self, expected: Address, supplied: Optional[Address], role: str) -> None:
        """A supplied address must equal the derived one (None means "use derived")."""
        if supplied is not None and supplied != expected:
            raise AddressMismatch(
                f"{role} does not match its derived address",
                role=role,
                expected=expected,
                supplied=supplied,
            )

    def require_recipient(self, recipient: Address, *forbidden: Address) -> None:
        if recipient in forbidden:
            raise InvalidRecipient("recipient may not be a charity's own account", recipient=recipient)

    # -- custody --------------------------------------------------------------

    def require_sufficient(self, balance: int, amount: int) -> None:
        if balance < amount:
            raise InsufficientFunds(
                f"balance {balance} cannot cover {amount}",
                balance=balance,
                amount=amount,
            )

    def require_reserve(self, balance: int, amount: int) -> None:
        """The vault must keep ``min_reserve`` after paying ``amount``."""
        remaining = checked_sub(balance, amount)
        if remaining < self.config.min_reserve:
            raise InsufficientFundsForReserve(
                f"withdrawal would leave {remaining}, below reserve {self.config.min_reserve}",
                remaining=remaining,
                min_reserve=self.config.min_reserve,
            )
