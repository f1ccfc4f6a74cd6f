"""CLI commands and scenario runs."""

import json
import textwrap

import pytest
import yaml

from charity_ledger.cli import LedgerCLI, ScenarioRunner, format_output, OutputFormat, main, wallet_keypair
from charity_ledger.config import LedgerConfig
from charity_ledger.derivation import charity_address, vault_address
from charity_ledger.keys import Keypair


SCENARIO = textwrap.dedent("""\
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
      - advance: 60
      - instruction: donate
        signer: bob
        args: {charity: $water, amount: 1000000}
      - instruction: withdraw
        signer: bob
        args: {charity: $water, amount: 10, recipient: $bob}
        expect_error: UNAUTHORIZED
      - instruction: withdraw
        signer: alice
        args: {charity: $water, amount: 400000, recipient: $alice}
""")


def _run_cli(capsys, *argv):
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestKeysAndDerivation:

    def test_keygen(self, capsys):
        code, out, _ = _run_cli(capsys, "keygen")
        assert code == 0
        data = json.loads(out)
        keypair = Keypair.from_seed(bytes.fromhex(data["seed"]))
        assert str(keypair.address) == data["address"]

    def test_derive_charity_matches_library(self, capsys):
        authority = wallet_keypair("alice").address
        code, out, _ = _run_cli(capsys, "derive", "charity", "--authority", str(authority), "--name", "Water Fund")
        assert code == 0
        data = json.loads(out)
        expected, bump = charity_address(authority, "Water Fund")
        assert data == {"namespace": "charity", "address": str(expected), "bump": bump}

    def test_derive_vault(self, capsys):
        charity, _ = charity_address(wallet_keypair("alice").address, "Water Fund")
        code, out, _ = _run_cli(capsys, "derive", "vault", "--charity", str(charity))
        assert code == 0
        assert json.loads(out)["address"] == str(vault_address(charity)[0])

    def test_derive_rejects_long_name(self, capsys):
        authority = wallet_keypair("alice").address
        code, _, err = _run_cli(capsys, "derive", "charity", "-a", str(authority), "-n", "x" * 33)
        assert code == 1
        assert err.startswith("Error:")

    def test_derive_rejects_bad_address(self, capsys):
        code, _, _ = _run_cli(capsys, "derive", "vault", "--charity", "0OIl")
        assert code == 1


class TestConfigCommands:

    def test_show_merges_file(self, capsys, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("min_reserve: 5\n")
        code, out, _ = _run_cli(capsys, "config", "show", "--file", str(path))
        assert code == 0
        assert json.loads(out)["min_reserve"] == 5

    def test_validate_reports_errors(self, capsys, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("name_max: 64\n")
        code, out, _ = _run_cli(capsys, "config", "validate", "--file", str(path))
        assert code == 1
        data = json.loads(out)
        assert data["valid"] is False
        assert any("name_max" in e for e in data["errors"])

    def test_schema_as_yaml(self, capsys):
        code, out, _ = _run_cli(capsys, "--format", "yaml", "config", "schema")
        assert code == 0
        assert yaml.safe_load(out)["description_max"]["default"] == 256

    def test_missing_config_file_quiet(self, capsys, tmp_path):
        code, _, err = _run_cli(capsys, "--quiet", "config", "show", "--file", str(tmp_path / "absent.yaml"))
        assert code == 1
        assert err == ""


class TestRun:

    def test_scenario_passes(self, capsys, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text(SCENARIO)
        code, out, _ = _run_cli(capsys, "run", str(path))
        assert code == 0
        data = json.loads(out)
        assert data["ok"] is True
        assert [s["as_expected"] for s in data["steps"]] == [True, True, True, True]
        (charity,) = data["charities"]
        assert charity["vault_balance"] == 600_000
        assert charity["audit_ok"] is True
        assert charity["updated_at"] == 1_700_000_000

    def test_unexpected_failure_exits_nonzero(self, capsys, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text(SCENARIO.replace("amount: 400000", "amount: 950000"))
        code, out, _ = _run_cli(capsys, "run", str(path))
        assert code == 1
        step = json.loads(out)["steps"][-1]
        assert step["error_code"] == "INSUFFICIENT_FUNDS_FOR_RESERVE"
        assert step["as_expected"] is False

    def test_missing_scenario(self, capsys, tmp_path):
        code, _, err = _run_cli(capsys, "run", str(tmp_path / "nope.yaml"))
        assert code == 1
        assert "not found" in err

    def test_unknown_reference(self, capsys, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text(SCENARIO.replace("$water", "$fire"))
        code, _, err = _run_cli(capsys, "run", str(path))
        assert code == 1
        assert "$fire" in err

    def test_unknown_expected_code(self, capsys, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text(SCENARIO.replace("expect_error: UNAUTHORIZED", "expect_error: UNAUTHORISED"))
        code, _, err = _run_cli(capsys, "run", str(path))
        assert code == 1
        assert "UNAUTHORISED" in err


class TestScenarioRunner:

    def test_invalid_config_override(self):
        with pytest.raises(Exception, match="name_max"):
            ScenarioRunner({"config": {"name_max": 99}}, LedgerConfig())

    def test_wallets_funded(self):
        runner = ScenarioRunner(yaml.safe_load(SCENARIO), LedgerConfig())
        assert runner.runtime.balance(wallet_keypair("bob").address) == 5_000_000_000
        assert runner.config.min_reserve == 100_000


def test_table_format():
    rendered = format_output([{"a": 1, "b": "two"}], OutputFormat.TABLE)
    assert rendered.splitlines()[0].split(" | ") == ["a", "b  "]


def test_no_command_prints_help(capsys):
    assert LedgerCLI().run([]) == 0
    assert "charity-ledger" in capsys.readouterr().out
