"""
Charity Ledger Program

The six instruction handlers and the read-only queries.

    ┌───────────────────────────────────────────────────────────────────┐
    │                          CharityProgram                            │
    │                                                                    │
    │  coerce args ─▶ runtime.transaction() ─▶ load ─▶ check ─▶ write    │
    │                                                  │                 │
    │                                     commit ──────┴──── rollback    │
    │                                        │                           │
    │                                 EventLog.append                    │
    └───────────────────────────────────────────────────────────────────┘

Each handler loads the record, runs its checks and performs its writes
inside one runtime transaction, so two instructions against the same
charity never interleave. A failure at any point rolls every write back
and no event is appended. Handlers raise ``LedgerError`` subclasses; the
transaction ``Processor`` turns them into typed results.

Authority-gated instructions check the caller before anything else, so a
non-authority always sees ``Unauthorized`` whatever else is wrong with the
request.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple, Union

from charity_ledger.config import LedgerConfig
from charity_ledger.derivation import charity_address, donation_address, vault_address
from charity_ledger.errors import AccountAlreadyExists, AccountNotFound, InvalidRecipient, LedgerError
from charity_ledger.events import (
    CharityCreated,
    CharityDeleted,
    CharityUpdated,
    DonationMade,
    Event,
    EventLog,
    PauseToggled,
    Withdrawn,
)
from charity_ledger.keys import Address
from charity_ledger.observability import get_logger
from charity_ledger.runtime import Runtime
from charity_ledger.state import (
    DONATION_SIZE,
    Charity,
    Donation,
    charity_space,
    description_slot,
    is_charity_record,
    is_donation_record,
)
from charity_ledger.validation import Validator, checked_add, checked_sub, utf8_len

logger = get_logger("program")

AddressLike = Union[Address, str, bytes]


class CharityProgram:
    """Instruction handlers over a ``Runtime`` account store."""

    def __init__(
        self,
        runtime: Runtime,
        config: Optional[LedgerConfig] = None,
        event_log: Optional[EventLog] = None,
        validator: Optional[Validator] = None,
    ):
        self.runtime = runtime
        self.config = config or runtime.config
        self.events = event_log if event_log is not None else EventLog()
        self.validator = validator or Validator(self.config)
        self.program_id = self.config.program_address

    # =========================================================================
    # ADDRESSING
    # =========================================================================

    def charity_address(self, authority: AddressLike, name: str) -> Address:
        address, _ = charity_address(
            Address.coerce(authority), name,
            program_id=self.program_id,
            max_attempts=self.config.max_derivation_attempts,
        )
        return address

    def donation_address(self, donor: AddressLike, charity: AddressLike, sequence: int) -> Address:
        address, _ = donation_address(
            Address.coerce(donor), Address.coerce(charity), sequence,
            program_id=self.program_id,
            max_attempts=self.config.max_derivation_attempts,
        )
        return address

    def vault_address(self, charity: AddressLike) -> Address:
        """The charity's vault, re-derived from its recorded bump when available."""
        charity = Address.coerce(charity)
        account = self.runtime.get_account(charity)
        if account is not None and account.owner == self.program_id and is_charity_record(account.data):
            return self._vault_of(charity, Charity.unpack(account.data))
        address, _ = vault_address(
            charity,
            program_id=self.program_id,
            max_attempts=self.config.max_derivation_attempts,
        )
        return address

    def _vault_of(self, charity: Address, record: Charity) -> Address:
        address, _ = vault_address(charity, program_id=self.program_id, bump=record.vault_bump)
        return address

    # =========================================================================
    # RECORD ACCESS
    # =========================================================================

    def _load_charity(self, charity: Address) -> Charity:
        account = self.runtime.get_account(charity)
        if account is None or account.owner != self.program_id or not is_charity_record(account.data):
            raise AccountNotFound(f"no charity at {charity}", address=charity)
        return Charity.unpack(account.data)

    def _store_charity(self, charity: Address, record: Charity) -> None:
        current = self.runtime.require_account(charity)
        self.runtime.write_data(
            charity,
            record.pack(description_slot(current.data)),
            program=self.program_id,
        )

    def _emit(self, event: Event) -> Event:
        self.events.append(event)
        return event

    @contextmanager
    def _instruction(self, name: str, **context: object) -> Iterator[None]:
        context = {k: str(v) for k, v in context.items()}
        start = time.monotonic()
        try:
            yield
        except LedgerError as e:
            logger.warning(
                f"{name} rejected: {e.message}",
                operation=name,
                error_code=e.code,
                **context,
            )
            raise
        logger.operation(name, (time.monotonic() - start) * 1000, **context)

    def _optional_address(self, value: Optional[AddressLike], role: str) -> Optional[Address]:
        return None if value is None else self.validator.require_address_arg(value, role)

    # =========================================================================
    # INSTRUCTIONS
    # =========================================================================
    #
    # Every read of a record or balance happens inside the same
    # runtime.transaction() as the writes that depend on it, so concurrent
    # instructions on one charity are serialized end to end.

    def create_charity(self, authority: AddressLike, name: str, description: str) -> Address:
        """Create a charity record and its empty vault. The authority pays the deposit."""
        with self._instruction("create_charity", authority=authority):
            v = self.validator
            authority = v.require_address_arg(authority, "authority")
            name = v.require_name(name)
            description = v.require_description(description)

            charity, bump = charity_address(
                authority, name,
                program_id=self.program_id,
                max_attempts=self.config.max_derivation_attempts,
            )
            vault, vault_bump = vault_address(
                charity,
                program_id=self.program_id,
                max_attempts=self.config.max_derivation_attempts,
            )
            space = charity_space(self.config.description_max)

            with self.runtime.transaction():
                for address, role in ((charity, "charity"), (vault, "vault")):
                    if self.runtime.exists(address):
                        raise AccountAlreadyExists(f"{role} account already exists", address=address)
                v.require_sufficient(self.runtime.balance(authority), self.runtime.minimum_balance(space))

                now = self.runtime.clock.now()
                record = Charity(
                    authority=authority,
                    name=name,
                    description=description,
                    created_at=now,
                    updated_at=now,
                    bump=bump,
                    vault_bump=vault_bump,
                )
                self.runtime.create_account(
                    charity,
                    payer=authority,
                    owner=self.program_id,
                    data=record.pack(self.config.description_max),
                )
                self.runtime.create_account(vault, payer=authority, owner=self.program_id, lamports=0)

            self._emit(CharityCreated(
                charity=str(charity),
                authority=str(authority),
                name=name,
                description=description,
                created_at=now,
            ))
            return charity

    def donate(
        self,
        charity: AddressLike,
        donor: AddressLike,
        amount: int,
        vault: Optional[AddressLike] = None,
    ) -> Address:
        """Move ``amount`` from donor to vault and record a Donation receipt."""
        with self._instruction("donate", charity=charity, donor=donor):
            v = self.validator
            charity = v.require_address_arg(charity, "charity")
            donor = v.require_address_arg(donor, "donor")
            supplied_vault = self._optional_address(vault, "vault")
            amount = v.require_positive_amount(amount)

            with self.runtime.transaction():
                record = self._load_charity(charity)
                v.require_active(record)
                v.require_not_paused(record)
                expected_vault = self._vault_of(charity, record)
                v.require_address(expected_vault, supplied_vault, "vault")

                sequence = record.donation_count
                donation, donation_bump = donation_address(
                    donor, charity, sequence,
                    program_id=self.program_id,
                    max_attempts=self.config.max_derivation_attempts,
                )
                if self.runtime.exists(donation):
                    raise AccountAlreadyExists("donation receipt already exists", address=donation)

                deposit = self.runtime.minimum_balance(DONATION_SIZE)
                v.require_sufficient(self.runtime.balance(donor), checked_add(amount, deposit))
                new_total = checked_add(record.total_received, amount)
                new_count = checked_add(record.donation_count, 1)

                now = self.runtime.clock.now()
                receipt = Donation(
                    donor=donor,
                    charity=charity,
                    charity_name_snapshot=record.name,
                    amount=amount,
                    created_at=now,
                    sequence=sequence,
                    bump=donation_bump,
                )
                self.runtime.transfer(donor, expected_vault, amount, authority=donor)
                self.runtime.create_account(donation, payer=donor, owner=self.program_id, data=receipt.pack())
                self._store_charity(charity, record.evolve(total_received=new_total, donation_count=new_count))

            self._emit(DonationMade(
                donor=str(donor),
                charity=str(charity),
                donation=str(donation),
                amount=amount,
                new_total=new_total,
                new_count=new_count,
                created_at=now,
            ))
            return donation

    def withdraw(
        self,
        charity: AddressLike,
        authority: AddressLike,
        amount: int,
        recipient: AddressLike,
        vault: Optional[AddressLike] = None,
    ) -> int:
        """Pay ``amount`` out of the vault, keeping the reserve. Returns the remaining balance."""
        with self._instruction("withdraw", charity=charity, authority=authority):
            v = self.validator
            charity = v.require_address_arg(charity, "charity")
            authority = v.require_address_arg(authority, "authority")

            with self.runtime.transaction():
                record = self._load_charity(charity)
                v.require_authority(record, authority)
                v.require_active(record)
                amount = v.require_positive_amount(amount)
                recipient = v.require_address_arg(recipient, "recipient")
                expected_vault = self._vault_of(charity, record)
                v.require_address(expected_vault, self._optional_address(vault, "vault"), "vault")
                v.require_recipient(recipient, expected_vault, charity)
                self._require_wallet(recipient)

                balance = self.runtime.balance(expected_vault)
                v.require_sufficient(balance, amount)
                v.require_reserve(balance, amount)
                remaining = checked_sub(balance, amount)

                now = self.runtime.clock.now()
                self.runtime.transfer(expected_vault, recipient, amount, authority=self.program_id)
                self._store_charity(charity, record.evolve(withdrawn_at=now))

            self._emit(Withdrawn(
                charity=str(charity),
                authority=str(authority),
                recipient=str(recipient),
                amount=amount,
                remaining_balance=remaining,
                withdrawn_at=now,
            ))
            return remaining

    def update_charity(self, charity: AddressLike, authority: AddressLike, description: str) -> None:
        """Replace the description, growing the record if the new text needs more room."""
        with self._instruction("update_charity", charity=charity, authority=authority):
            v = self.validator
            charity = v.require_address_arg(charity, "charity")
            authority = v.require_address_arg(authority, "authority")

            with self.runtime.transaction():
                record = self._load_charity(charity)
                v.require_authority(record, authority)
                v.require_active(record)
                description = v.require_description(description)
                v.require_changed(record.description, description, "description")

                account = self.runtime.require_account(charity)
                if utf8_len(description) > description_slot(account.data):
                    new_len = charity_space(max(self.config.description_max, utf8_len(description)))
                    top_up = self.runtime.minimum_balance(new_len) - account.lamports
                    if top_up > 0:
                        v.require_sufficient(self.runtime.balance(authority), top_up)
                    self.runtime.realloc(charity, new_len, program=self.program_id, payer=authority)

                now = self.runtime.clock.now()
                self._store_charity(charity, record.evolve(description=description, updated_at=now))

            self._emit(CharityUpdated(
                charity=str(charity),
                old_description=record.description,
                new_description=description,
                updated_at=now,
            ))

    def pause_donations(self, charity: AddressLike, authority: AddressLike, paused: bool) -> None:
        """Open or close the charity to new donations. Withdrawals are unaffected."""
        with self._instruction("pause_donations", charity=charity, authority=authority):
            v = self.validator
            charity = v.require_address_arg(charity, "charity")
            authority = v.require_address_arg(authority, "authority")

            with self.runtime.transaction():
                record = self._load_charity(charity)
                v.require_authority(record, authority)
                v.require_active(record)
                paused = v.require_bool(paused, "paused")
                v.require_changed(record.paused, paused, "paused")

                now = self.runtime.clock.now()
                self._store_charity(charity, record.evolve(paused=paused, updated_at=now))

            self._emit(PauseToggled(charity=str(charity), paused=paused, updated_at=now))

    def delete_charity(
        self,
        charity: AddressLike,
        authority: AddressLike,
        recipient: Optional[AddressLike] = None,
    ) -> int:
        """Soft-delete: sweep and close the vault, refund the record deposit.

        The record stays behind as a zero-lamport tombstone with ``deleted_at``
        set. Returns the swept vault balance.
        """
        with self._instruction("delete_charity", charity=charity, authority=authority):
            v = self.validator
            charity = v.require_address_arg(charity, "charity")
            authority = v.require_address_arg(authority, "authority")

            with self.runtime.transaction():
                record = self._load_charity(charity)
                v.require_authority(record, authority)
                v.require_active(record)

                vault = self._vault_of(charity, record)
                destination = self._sweep_destination(
                    self._optional_address(recipient, "recipient"), authority, vault, charity,
                )
                final_balance = self.runtime.balance(vault)

                now = self.runtime.clock.now()
                if self.runtime.exists(vault):
                    self.runtime.close_account(vault, program=self.program_id, destination=destination)
                self._store_charity(charity, record.evolve(deleted_at=now, updated_at=now))
                self.runtime.transfer(
                    charity, authority, self.runtime.balance(charity), authority=self.program_id,
                )

            self._emit(CharityDeleted(
                charity=str(charity),
                recipient=str(destination),
                final_balance=final_balance,
                total_received=record.total_received,
                donation_count=record.donation_count,
                deleted_at=now,
            ))
            return final_balance

    def _sweep_destination(
        self,
        recipient: Optional[Address],
        authority: Address,
        vault: Address,
        charity: Address,
    ) -> Address:
        """The recipient if it is an existing wallet, otherwise the authority."""
        if recipient is None:
            return authority
        account = self.runtime.get_account(recipient)
        if recipient in (vault, charity) or account is None or account.is_program_owned:
            logger.info(
                "sweep recipient unusable, falling back to authority",
                operation="delete_charity",
                recipient=str(recipient),
            )
            return authority
        return recipient

    def _require_wallet(self, address: Address) -> None:
        account = self.runtime.get_account(address)
        if account is not None and account.is_program_owned:
            raise InvalidRecipient("recipient must be a wallet, not a program account", recipient=address)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_charity(self, charity: AddressLike) -> Charity:
        return self._load_charity(Address.coerce(charity))

    def get_donation(self, donation: AddressLike) -> Donation:
        donation = Address.coerce(donation)
        account = self.runtime.get_account(donation)
        if account is None or account.owner != self.program_id or not is_donation_record(account.data):
            raise AccountNotFound(f"no donation at {donation}", address=donation)
        return Donation.unpack(account.data)

    def vault_balance(self, charity: AddressLike) -> int:
        return self.runtime.balance(self.vault_address(charity))

    def status(self, charity: AddressLike) -> str:
        """One of ``active``, ``paused`` or ``deleted``."""
        return self.get_charity(charity).status

    def _records(self) -> Iterator[Tuple[Address, bytes]]:
        for address, account in self.runtime.accounts(owner=self.program_id):
            yield address, account.data

    def donations_for(self, charity: AddressLike) -> List[Tuple[Address, Donation]]:
        charity = Address.coerce(charity)
        found = [
            (address, Donation.unpack(data))
            for address, data in self._records()
            if is_donation_record(data)
        ]
        return sorted(
            ((a, d) for a, d in found if d.charity == charity),
            key=lambda pair: pair[1].sequence,
        )

    def donations_by(self, donor: AddressLike) -> List[Tuple[Address, Donation]]:
        donor = Address.coerce(donor)
        found = [
            (address, Donation.unpack(data))
            for address, data in self._records()
            if is_donation_record(data)
        ]
        return sorted(
            ((a, d) for a, d in found if d.donor == donor),
            key=lambda pair: (pair[1].created_at, str(pair[1].charity), pair[1].sequence),
        )

    def charities_of(self, authority: AddressLike) -> List[Tuple[Address, Charity]]:
        authority = Address.coerce(authority)
        found = [
            (address, Charity.unpack(data))
            for address, data in self._records()
            if is_charity_record(data)
        ]
        return sorted(
            ((a, c) for a, c in found if c.authority == authority),
            key=lambda pair: (pair[1].created_at, pair[1].name),
        )
