"""
Charity Ledger Transactions

Signed instruction envelopes and the processor that executes them.

Message bytes are the canonical JSON of::

    {"instruction": ..., "args": {...}, "signer": "<base58>", "nonce": "..."}

signed with the signer's Ed25519 key. The signer becomes the caller of the
instruction (``authority`` or ``donor``); callers never name themselves in
``args``. Nonces are single-use: once a signature verifies, its nonce is
consumed whether or not the instruction succeeds.

``Processor.process`` never raises for a rejected instruction. It returns an
``InstructionResult`` carrying the typed ``LedgerError`` so callers can tell
"not authorized" apart from "fix your input".

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from charity_ledger.canonical import canonical_bytes
from charity_ledger.errors import (
    InvalidSignature,
    LedgerError,
    MalformedInstruction,
    ReplayedTransaction,
    UnknownInstruction,
)
from charity_ledger.events import Event
from charity_ledger.keys import Address, Keypair, verify_signature
from charity_ledger.observability import (
    generate_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)
from charity_ledger.program import CharityProgram

logger = get_logger("transaction")


@dataclass(frozen=True)
class InstructionSpec:
    """Argument shape of one instruction."""
    signer_role: str
    required: Tuple[str, ...]
    optional: Tuple[str, ...] = ()


INSTRUCTIONS: Dict[str, InstructionSpec] = {
    "create_charity": InstructionSpec("authority", ("name", "description")),
    "donate": InstructionSpec("donor", ("charity", "amount"), ("vault",)),
    "withdraw": InstructionSpec("authority", ("charity", "amount", "recipient"), ("vault",)),
    "update_charity": InstructionSpec("authority", ("charity", "description")),
    "pause_donations": InstructionSpec("authority", ("charity", "paused")),
    "delete_charity": InstructionSpec("authority", ("charity",), ("recipient",)),
}

ADDRESS_ARGS = frozenset({"charity", "recipient", "vault"})


# =============================================================================
# REPLAY PROTECTION
# =============================================================================

class NonceRegistry:
    """
    Registry of consumed nonces.

    Entries older than ``max_age_hours`` are pruned on each registration.
    """

    def __init__(self, max_age_hours: int = 168):
        self._nonces: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._max_age = timedelta(hours=max_age_hours)

    def check_and_register(self, nonce: str) -> bool:
        """Register ``nonce``; False if it was already used."""
        with self._lock:
            self._cleanup()
            if nonce in self._nonces:
                return False
            self._nonces[nonce] = datetime.now(timezone.utc)
            return True

    def is_fresh(self, nonce: str) -> bool:
        with self._lock:
            return nonce not in self._nonces

    def _cleanup(self) -> None:
        cutoff = datetime.now(timezone.utc) - self._max_age
        expired = [n for n, t in self._nonces.items() if t < cutoff]
        for nonce in expired:
            del self._nonces[nonce]

    def size(self) -> int:
        with self._lock:
            return len(self._nonces)


# =============================================================================
# TRANSACTION
# =============================================================================

@dataclass(frozen=True)
class Transaction:
    """A signed instruction."""
    instruction: str
    args: Dict[str, Any]
    signer: Address
    nonce: str
    signature: bytes = b""

    def message(self) -> bytes:
        return canonical_bytes({
            "instruction": self.instruction,
            "args": self.args,
            "signer": str(self.signer),
            "nonce": self.nonce,
        })

    @classmethod
    def build(
        cls,
        keypair: Keypair,
        instruction: str,
        nonce: Optional[str] = None,
        **args: Any,
    ) -> "Transaction":
        """Build and sign a transaction for ``keypair``."""
        unsigned = cls(
            instruction=instruction,
            args={k: (str(v) if isinstance(v, Address) else v) for k, v in args.items()},
            signer=keypair.address,
            nonce=nonce or secrets.token_hex(16),
        )
        return replace(unsigned, signature=keypair.sign(unsigned.message()))

    def verify(self) -> bool:
        return verify_signature(self.signer, self.message(), self.signature)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instruction": self.instruction,
            "args": dict(self.args),
            "signer": str(self.signer),
            "nonce": self.nonce,
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        try:
            return cls(
                instruction=data["instruction"],
                args=dict(data.get("args") or {}),
                signer=Address.coerce(data["signer"]),
                nonce=data["nonce"],
                signature=bytes.fromhex(data.get("signature", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedInstruction(f"malformed transaction: {e}") from e


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class InstructionResult:
    """Outcome of one processed transaction."""
    success: bool
    instruction: str
    value: Any = None
    events: List[Event] = field(default_factory=list)
    error: Optional[LedgerError] = None
    correlation_id: str = ""

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if isinstance(value, Address):
            value = str(value)
        return {
            "success": self.success,
            "instruction": self.instruction,
            "value": value,
            "events": [e.to_dict() for e in self.events],
            "error": self.error.to_dict() if self.error is not None else None,
            "correlation_id": self.correlation_id,
        }


# =============================================================================
# PROCESSOR
# =============================================================================

class Processor:
    """Verifies, de-duplicates and dispatches signed transactions."""

    def __init__(self, program: CharityProgram, nonces: Optional[NonceRegistry] = None):
        self.program = program
        self.nonces = nonces or NonceRegistry()

    def process(self, tx: Transaction) -> InstructionResult:
        correlation_id = generate_correlation_id()
        token = set_correlation_id(correlation_id)
        try:
            start = len(self.program.events)
            try:
                value = self._execute(tx)
            except LedgerError as e:
                return InstructionResult(
                    success=False,
                    instruction=tx.instruction,
                    error=e,
                    correlation_id=correlation_id,
                )
            events = [
                record.event for record in self.program.events.read_all(start)
                if record.event.correlation_id == correlation_id
            ]
            return InstructionResult(
                success=True,
                instruction=tx.instruction,
                value=value,
                events=events,
                correlation_id=correlation_id,
            )
        finally:
            reset_correlation_id(token)

    def _execute(self, tx: Transaction) -> Any:
        if not tx.verify():
            logger.warning("signature rejected", error_code=InvalidSignature.code, signer=str(tx.signer))
            raise InvalidSignature("signature does not verify", signer=tx.signer)
        if not self.nonces.check_and_register(tx.nonce):
            logger.warning("replay rejected", error_code=ReplayedTransaction.code, nonce=tx.nonce)
            raise ReplayedTransaction(f"nonce {tx.nonce!r} already used", nonce=tx.nonce)

        spec = INSTRUCTIONS.get(tx.instruction)
        if spec is None:
            raise UnknownInstruction(f"unknown instruction {tx.instruction!r}")

        args = dict(tx.args)
        if spec.signer_role in args:
            raise MalformedInstruction(f"{spec.signer_role} is the signer and may not be passed as an argument")
        missing = [name for name in spec.required if name not in args]
        if missing:
            raise MalformedInstruction(f"missing arguments: {', '.join(missing)}")
        unexpected = sorted(set(args) - set(spec.required) - set(spec.optional))
        if unexpected:
            raise MalformedInstruction(f"unexpected arguments: {', '.join(unexpected)}")

        for name in ADDRESS_ARGS.intersection(args):
            if args[name] is None:
                continue
            try:
                args[name] = Address.coerce(args[name])
            except (TypeError, ValueError) as e:
                raise MalformedInstruction(f"{name}: {e}") from e

        args[spec.signer_role] = tx.signer
        return getattr(self.program, tx.instruction)(**args)
