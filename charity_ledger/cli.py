#!/usr/bin/env python3
"""
Charity Ledger CLI

Usage:
    charity-ledger <command> [subcommand] [options]

Commands:
    config      Show, validate or describe configuration
    keygen      Generate an Ed25519 wallet keypair
    derive      Compute charity, vault and donation addresses
    run         Execute a scenario file against an in-memory ledger

Scenario files (YAML):

    config:
      min_reserve: 100000
    wallets:
      alice: 10000000000
      bob: 5000000000
    steps:
      - instruction: create_charity
        signer: alice
        args: {name: Water Fund, description: Clean water}
        as: water
      - instruction: donate
        signer: bob
        args: {charity: $water, amount: 1000000}
      - instruction: withdraw
        signer: bob
        args: {charity: $water, amount: 10, recipient: $bob}
        expect_error: UNAUTHORIZED
      - advance: 60

``$name`` refers to a wallet or to a value bound with ``as``. Wallet keys are
derived from their names, so a scenario is reproducible run to run.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from charity_ledger import __version__
from charity_ledger.audit import audit_charity
from charity_ledger.config import (
    LedgerConfig,
    export_schema,
    load_config,
    load_config_file,
    validate_config_mapping,
)
from charity_ledger.derivation import charity_address, donation_address, vault_address
from charity_ledger.errors import ConfigError, LedgerError, error_for_code
from charity_ledger.keys import Address, Keypair
from charity_ledger.observability import configure_logging
from charity_ledger.program import CharityProgram
from charity_ledger.runtime import ManualClock, Runtime
from charity_ledger.transaction import Processor, Transaction


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return _format_table(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:48] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def wallet_keypair(name: str) -> Keypair:
    """Deterministic scenario wallet for ``name``."""
    return Keypair.from_seed(hashlib.sha256(f"charity-ledger-scenario:{name}".encode("utf-8")).digest())


# =============================================================================
# SCENARIOS
# =============================================================================

class ScenarioRunner:
    """Runs a parsed scenario mapping through a fresh in-memory ledger."""

    def __init__(self, scenario: Dict[str, Any], config: LedgerConfig):
        if not isinstance(scenario, dict):
            raise CLIError("scenario must be a mapping")
        overrides = scenario.get("config") or {}
        errors = validate_config_mapping({**config.to_dict(), **overrides})
        if errors:
            raise CLIError("invalid scenario config: " + "; ".join(errors))
        self.config = config.replace(**overrides)
        self.clock = ManualClock(int(scenario.get("clock", 1_700_000_000)))
        self.runtime = Runtime(clock=self.clock, config=self.config)
        self.program = CharityProgram(self.runtime)
        self.processor = Processor(self.program)
        self.steps: List[Dict[str, Any]] = list(scenario.get("steps") or [])
        self.wallets: Dict[str, Keypair] = {}
        self.bindings: Dict[str, Any] = {}
        self.charities: List[Address] = []

        for name, lamports in (scenario.get("wallets") or {}).items():
            keypair = wallet_keypair(str(name))
            self.wallets[str(name)] = keypair
            self.bindings[str(name)] = keypair.address
            if lamports:
                self.runtime.airdrop(keypair.address, int(lamports))

    def _resolve(self, value: Any) -> Any:
        if isinstance(value, str) and value.startswith("$"):
            key = value[1:]
            if key not in self.bindings:
                raise CLIError(f"unknown reference {value!r}")
            bound = self.bindings[key]
            return str(bound) if isinstance(bound, Address) else bound
        return value

    def run(self) -> Dict[str, Any]:
        results = []
        ok = True
        for index, step in enumerate(self.steps, start=1):
            if "advance" in step:
                self.clock.advance(int(step["advance"]))
                continue
            result = self._run_step(index, step)
            ok = ok and result["as_expected"]
            results.append(result)

        charities = []
        for address in self.charities:
            record = self.program.get_charity(address)
            report = audit_charity(self.program, address)
            charities.append({
                "address": str(address),
                **record.to_dict(),
                "vault": str(self.program.vault_address(address)),
                "vault_balance": self.program.vault_balance(address),
                "audit_ok": report.ok,
                "audit_violations": report.violations,
            })
            ok = ok and report.ok

        return {
            "ok": ok,
            "steps": results,
            "charities": charities,
            "wallets": {name: self.runtime.balance(kp.address) for name, kp in self.wallets.items()},
            "events": [record.to_dict() for record in self.program.events.read_all()],
        }

    def _run_step(self, index: int, step: Dict[str, Any]) -> Dict[str, Any]:
        signer_name = step.get("signer")
        if signer_name not in self.wallets:
            raise CLIError(f"step {index}: unknown signer {signer_name!r}")
        instruction = step.get("instruction")
        if not instruction:
            raise CLIError(f"step {index}: missing instruction")
        expected = step.get("expect_error")
        if expected and error_for_code(expected) is None:
            raise CLIError(f"step {index}: unknown error code {expected!r}")
        args = {k: self._resolve(v) for k, v in (step.get("args") or {}).items()}

        tx = Transaction.build(self.wallets[signer_name], instruction, **args)
        result = self.processor.process(tx)

        if result.success and instruction == "create_charity":
            self.charities.append(result.value)
        if result.success and step.get("as"):
            self.bindings[str(step["as"])] = result.value

        as_expected = (result.error_code == expected) if expected else result.success
        return {
            "step": index,
            "instruction": instruction,
            "signer": signer_name,
            "success": result.success,
            "value": str(result.value) if isinstance(result.value, Address) else result.value,
            "error_code": result.error_code,
            "error": result.error.message if result.error is not None else None,
            "expected_error": expected,
            "as_expected": as_expected,
            "events": [e.event_type for e in result.events],
        }


# =============================================================================
# CLI
# =============================================================================

class LedgerCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="charity-ledger",
            description="Charity donation ledger",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"charity-ledger {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_config_commands()
        self._register_keygen_command()
        self._register_derive_commands()
        self._register_run_command()

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        show = config_sub.add_parser("show", help="Show effective configuration")
        show.add_argument("--file", help="YAML configuration file")

        validate = config_sub.add_parser("validate", help="Validate a configuration file")
        validate.add_argument("--file", required=True, help="YAML configuration file")

        config_sub.add_parser("schema", help="Describe configuration values")

    def _register_keygen_command(self) -> None:
        self.subparsers.add_parser("keygen", help="Generate a wallet keypair")

    def _register_derive_commands(self) -> None:
        derive = self.subparsers.add_parser("derive", help="Derive entity addresses")
        derive_sub = derive.add_subparsers(dest="subcommand")

        charity = derive_sub.add_parser("charity", help="Charity record address")
        charity.add_argument("--authority", "-a", required=True, help="Authority address (base58)")
        charity.add_argument("--name", "-n", required=True, help="Charity name")

        vault = derive_sub.add_parser("vault", help="Vault address of a charity")
        vault.add_argument("--charity", required=True, help="Charity address (base58)")

        donation = derive_sub.add_parser("donation", help="Donation receipt address")
        donation.add_argument("--donor", "-d", required=True, help="Donor address (base58)")
        donation.add_argument("--charity", required=True, help="Charity address (base58)")
        donation.add_argument("--sequence", "-s", type=int, required=True, help="Charity donation count at donation time")

    def _register_run_command(self) -> None:
        run = self.subparsers.add_parser("run", help="Execute a scenario file")
        run.add_argument("scenario", help="Scenario YAML file")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            if isinstance(result, dict) and (result.get("ok") is False or result.get("valid") is False):
                return 1
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (ConfigError, LedgerError, OSError, yaml.YAMLError, ValueError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip())

        return handler(args)

    def _load_config(self, args: argparse.Namespace, path: Optional[str] = None) -> LedgerConfig:
        return load_config(path or args.config)

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self._load_config(args, args.file).to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = validate_config_mapping(load_config_file(args.file))
        return {"file": args.file, "valid": not errors, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return export_schema()

    # Key handlers
    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        keypair = Keypair.generate()
        return {"address": str(keypair.address), "seed": keypair.seed().hex()}

    # Derivation handlers
    def _handle_derive_charity(self, args: argparse.Namespace) -> Any:
        config = self._load_config(args)
        address, bump = charity_address(
            Address.from_string(args.authority), args.name,
            program_id=config.program_address,
            max_attempts=config.max_derivation_attempts,
        )
        return {"namespace": "charity", "address": str(address), "bump": bump}

    def _handle_derive_vault(self, args: argparse.Namespace) -> Any:
        config = self._load_config(args)
        address, bump = vault_address(
            Address.from_string(args.charity),
            program_id=config.program_address,
            max_attempts=config.max_derivation_attempts,
        )
        return {"namespace": "vault", "address": str(address), "bump": bump}

    def _handle_derive_donation(self, args: argparse.Namespace) -> Any:
        config = self._load_config(args)
        address, bump = donation_address(
            Address.from_string(args.donor),
            Address.from_string(args.charity),
            args.sequence,
            program_id=config.program_address,
            max_attempts=config.max_derivation_attempts,
        )
        return {"namespace": "donation", "address": str(address), "bump": bump}

    # Scenario handler
    def _handle_run(self, args: argparse.Namespace) -> Any:
        config = self._load_config(args)
        configure_logging(config.log_level, config.log_format)
        path = Path(args.scenario)
        if not path.exists():
            raise CLIError(f"Scenario file not found: {path}")
        with open(path, encoding="utf-8") as f:
            scenario = yaml.safe_load(f) or {}
        return ScenarioRunner(scenario, config).run()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = LedgerCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
