"""
Charity Ledger Audit

Replays a charity's event stream and checks the stored state against it:

    vault balance   == sum(donations) - sum(withdrawals) - sum(sweeps)
    total_received  == sum(donations)
    donation_count  == number of DonationMade events == receipts on record
    vault balance   >= min_reserve once anything has been withdrawn
    record deposit  covers rent while the charity is live; zero once deleted

Audits never mutate state. A failed audit reports every violation at once.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from charity_ledger.errors import InvariantViolation
from charity_ledger.events import CharityCreated, CharityDeleted, DonationMade, Withdrawn
from charity_ledger.keys import Address
from charity_ledger.observability import get_logger, timed_operation

logger = get_logger("audit")


@dataclass
class AuditReport:
    """Outcome of one charity audit."""
    charity: str
    donated: int = 0
    withdrawn: int = 0
    swept: int = 0
    donation_events: int = 0
    vault_balance: int = 0
    violations: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def raise_if_invalid(self) -> None:
        if self.violations:
            raise InvariantViolation(self.violations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "charity": self.charity,
            "ok": self.ok,
            "donated": self.donated,
            "withdrawn": self.withdrawn,
            "swept": self.swept,
            "donation_events": self.donation_events,
            "vault_balance": self.vault_balance,
            "violations": list(self.violations),
        }


@timed_operation(logger, "audit_charity")
def audit_charity(program: Any, charity: Any) -> AuditReport:
    """Check one charity's balances and counters against its event history."""
    charity = Address.coerce(charity)
    report = AuditReport(charity=str(charity))
    record = program.get_charity(charity)
    runtime = program.runtime

    created = False
    for entry in program.events.read_stream(charity):
        event = entry.event
        if isinstance(event, CharityCreated):
            created = True
        elif isinstance(event, DonationMade):
            report.donated += event.amount
            report.donation_events += 1
        elif isinstance(event, Withdrawn):
            report.withdrawn += event.amount
        elif isinstance(event, CharityDeleted):
            report.swept += event.final_balance

    if not created:
        report.violations.append("no CharityCreated event in stream")

    vault = program.vault_address(charity)
    report.vault_balance = runtime.balance(vault)
    expected_vault = report.donated - report.withdrawn - report.swept
    if report.vault_balance != expected_vault:
        report.violations.append(
            f"vault balance {report.vault_balance} != donations - withdrawals - sweeps ({expected_vault})"
        )
    if record.total_received != report.donated:
        report.violations.append(
            f"total_received {record.total_received} != sum of donations {report.donated}"
        )
    if record.donation_count != report.donation_events:
        report.violations.append(
            f"donation_count {record.donation_count} != DonationMade events {report.donation_events}"
        )

    receipts = program.donations_for(charity)
    if len(receipts) != record.donation_count:
        report.violations.append(
            f"{len(receipts)} donation receipts on record, donation_count is {record.donation_count}"
        )
    receipt_total = sum(d.amount for _, d in receipts)
    if receipt_total != record.total_received:
        report.violations.append(
            f"donation receipts sum to {receipt_total}, total_received is {record.total_received}"
        )

    record_lamports = runtime.balance(charity)
    if record.is_deleted:
        if runtime.exists(vault):
            report.violations.append("vault still open after deletion")
        if record_lamports != 0:
            report.violations.append(f"deleted record still holds {record_lamports} lamports")
    else:
        if record.withdrawn_at is not None and report.vault_balance < program.config.min_reserve:
            report.violations.append(
                f"vault balance {report.vault_balance} below reserve {program.config.min_reserve}"
            )
        account = runtime.get_account(charity)
        required = runtime.minimum_balance(len(account.data))
        if record_lamports < required:
            report.violations.append(f"record holds {record_lamports}, rent needs {required}")

    return report
