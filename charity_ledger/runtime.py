"""
Charity Ledger Runtime

In-process host for the ledger program: an account store keyed by
``Address``, lamport transfers with ownership rules, rent-exempt deposits,
and all-or-nothing transactions.

Ownership rules:

    system-owned account   debited only when the authority IS the account
                           (a wallet signing for itself)
    program-owned account  debited or written only by the owning program

A derived address has no private key, so once the program owns it the only
path for value to leave is through a program instruction.

Transactions:

    with runtime.transaction():
        runtime.transfer(donor, vault, amount, authority=donor)
        runtime.write_data(charity, record, program=program_id)

The first time an account is touched inside a transaction its original is
journaled. Any exception restores every journaled account, so a failed
instruction leaves no partial writes. Transactions are serialized through a
re-entrant lock; a nested ``transaction()`` joins the outer one.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterator, Optional, Tuple

from charity_ledger.config import LedgerConfig
from charity_ledger.errors import (
    AccountAlreadyExists,
    AccountNotFound,
    InsufficientFunds,
    InvalidAmount,
    Unauthorized,
)
from charity_ledger.keys import Address
from charity_ledger.observability import get_logger
from charity_ledger.validation import checked_add, checked_sub

logger = get_logger("runtime")

SYSTEM_PROGRAM_ID = Address.zero()


@dataclass
class Account:
    """Lamports, an owning program and opaque data."""
    lamports: int
    owner: Address = SYSTEM_PROGRAM_ID
    data: bytes = b""

    @property
    def is_program_owned(self) -> bool:
        return self.owner != SYSTEM_PROGRAM_ID

    def copy(self) -> "Account":
        return replace(self)


# =============================================================================
# CLOCKS
# =============================================================================

class Clock:
    """Wall-clock unix seconds, never allowed to run backwards."""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock(Clock):
    """Test clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000):
        super().__init__()
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int = 1) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = timestamp


# =============================================================================
# RUNTIME
# =============================================================================

class Runtime:
    """Account store plus the transfer and transaction primitives."""

    def __init__(self, clock: Optional[Clock] = None, config: Optional[LedgerConfig] = None):
        self.clock = clock or Clock()
        self.config = config or LedgerConfig()
        self._accounts: Dict[Address, Account] = {}
        self._lock = threading.RLock()
        self._journal: Optional[Dict[Address, Optional[Account]]] = None

    # -- transactions ---------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["Runtime"]:
        """Run a block atomically: every write is undone if it raises."""
        with self._lock:
            if self._journal is not None:
                yield self
                return
            self._journal = {}
            try:
                yield self
            except BaseException:
                restored = len(self._journal)
                for address, original in self._journal.items():
                    if original is None:
                        self._accounts.pop(address, None)
                    else:
                        self._accounts[address] = original
                logger.debug("transaction rolled back", accounts=restored)
                raise
            finally:
                self._journal = None

    def _touch(self, address: Address) -> None:
        if self._journal is not None and address not in self._journal:
            current = self._accounts.get(address)
            self._journal[address] = current.copy() if current is not None else None

    # -- reads ----------------------------------------------------------------

    def get_account(self, address: Address) -> Optional[Account]:
        with self._lock:
            account = self._accounts.get(address)
            return account.copy() if account is not None else None

    def require_account(self, address: Address) -> Account:
        account = self.get_account(address)
        if account is None:
            raise AccountNotFound(f"no account at {address}", address=address)
        return account

    def exists(self, address: Address) -> bool:
        with self._lock:
            return address in self._accounts

    def balance(self, address: Address) -> int:
        with self._lock:
            account = self._accounts.get(address)
            return account.lamports if account is not None else 0

    def accounts(self, owner: Optional[Address] = None) -> Iterator[Tuple[Address, Account]]:
        """Snapshot of (address, account) pairs, optionally filtered by owner."""
        with self._lock:
            items = [(a, acct.copy()) for a, acct in self._accounts.items()]
        for address, account in sorted(items, key=lambda pair: pair[0]):
            if owner is None or account.owner == owner:
                yield address, account

    def total_lamports(self) -> int:
        with self._lock:
            return sum(acct.lamports for acct in self._accounts.values())

    def minimum_balance(self, data_len: int) -> int:
        return self.config.minimum_balance(data_len)

    # -- lamports -------------------------------------------------------------

    def airdrop(self, address: Address, lamports: int) -> int:
        """Mint lamports into a (possibly new) system account."""
        if isinstance(lamports, bool) or not isinstance(lamports, int) or lamports <= 0:
            raise InvalidAmount(f"airdrop amount must be a positive integer, got {lamports!r}")
        with self.transaction():
            self._touch(address)
            account = self._accounts.get(address)
            if account is None:
                account = Account(lamports=0)
                self._accounts[address] = account
            account.lamports = checked_add(account.lamports, lamports)
            return account.lamports

    def transfer(self, source: Address, dest: Address, amount: int, *, authority: Address) -> None:
        """Move lamports; ``authority`` must be allowed to debit ``source``."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidAmount(f"transfer amount must be a non-negative integer, got {amount!r}")
        with self.transaction():
            src = self._accounts.get(source)
            if src is None:
                raise AccountNotFound(f"no account at {source}", address=source)
            self._check_debit(source, src, authority)
            if src.lamports < amount:
                raise InsufficientFunds(
                    f"{source} holds {src.lamports}, needs {amount}",
                    address=source,
                    balance=src.lamports,
                    amount=amount,
                )
            if amount == 0 or source == dest:
                return
            self._touch(source)
            self._touch(dest)
            dst = self._accounts.get(dest)
            if dst is None:
                dst = Account(lamports=0)
                self._accounts[dest] = dst
            src.lamports = checked_sub(src.lamports, amount)
            dst.lamports = checked_add(dst.lamports, amount)

    def _check_debit(self, address: Address, account: Account, authority: Address) -> None:
        if account.is_program_owned:
            if authority != account.owner:
                raise Unauthorized(
                    "only the owning program may debit this account",
                    address=address,
                    authority=authority,
                )
        elif authority != address:
            raise Unauthorized("wallets may only be debited by their own key", address=address)

    def _check_owner(self, address: Address, account: Account, program: Address) -> None:
        if account.owner != program:
            raise Unauthorized("account is not owned by this program", address=address, program=program)

    # -- account lifecycle ----------------------------------------------------

    def create_account(
        self,
        address: Address,
        *,
        payer: Address,
        owner: Address,
        data: bytes = b"",
        lamports: Optional[int] = None,
    ) -> Account:
        """Allocate a program-owned account funded by ``payer``.

        ``lamports`` defaults to the rent-exempt deposit for ``data``.
        """
        deposit = self.minimum_balance(len(data)) if data else 0
        if lamports is not None:
            deposit = lamports
        with self.transaction():
            if address in self._accounts:
                raise AccountAlreadyExists(f"account {address} already exists", address=address)
            self._touch(address)
            self._accounts[address] = Account(lamports=0, owner=owner, data=bytes(data))
            if deposit:
                self._fund(payer, address, deposit)
            return self._accounts[address].copy()

    def _fund(self, payer: Address, address: Address, amount: int) -> None:
        balance = self.balance(payer)
        if balance < amount:
            raise InsufficientFunds(
                f"payer {payer} holds {balance}, deposit needs {amount}",
                address=payer,
                balance=balance,
                amount=amount,
            )
        self.transfer(payer, address, amount, authority=payer)

    def write_data(self, address: Address, data: bytes, *, program: Address) -> None:
        """Overwrite an account's data in place; the size must not change."""
        with self.transaction():
            account = self._accounts.get(address)
            if account is None:
                raise AccountNotFound(f"no account at {address}", address=address)
            self._check_owner(address, account, program)
            if len(data) != len(account.data):
                raise ValueError(f"data size {len(data)} != allocated {len(account.data)}; use realloc")
            self._touch(address)
            account.data = bytes(data)

    def realloc(self, address: Address, new_len: int, *, program: Address, payer: Address) -> None:
        """Resize an account's data, settling the deposit difference with ``payer``."""
        with self.transaction():
            account = self._accounts.get(address)
            if account is None:
                raise AccountNotFound(f"no account at {address}", address=address)
            self._check_owner(address, account, program)
            old_len = len(account.data)
            if new_len == old_len:
                return
            required = self.minimum_balance(new_len)
            if required > account.lamports:
                self._fund(payer, address, required - account.lamports)
            elif required < account.lamports:
                self.transfer(address, payer, account.lamports - required, authority=program)
            self._touch(address)
            account = self._accounts[address]
            if new_len > old_len:
                account.data = account.data + b"\x00" * (new_len - old_len)
            else:
                account.data = account.data[:new_len]
            logger.debug("account reallocated", address=str(address), old_len=old_len, new_len=new_len)

    def close_account(self, address: Address, *, program: Address, destination: Address) -> int:
        """Sweep every lamport to ``destination`` and remove the account."""
        with self.transaction():
            account = self._accounts.get(address)
            if account is None:
                raise AccountNotFound(f"no account at {address}", address=address)
            self._check_owner(address, account, program)
            swept = account.lamports
            self.transfer(address, destination, swept, authority=program)
            self._touch(address)
            del self._accounts[address]
            return swept
