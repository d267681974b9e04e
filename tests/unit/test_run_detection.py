"""
Unit tests for the detection command-line script.
"""

import json

import pytest

from chainwatch.laundering.types import MoneyLaunderingError
from chainwatch.scripts import run_detection

HOUR = 60 * 60 * 1000
BASE_TIME = 1_700_000_000_000


def chain_transfers():
    names = ["A", "B", "C", "D", "E"]
    return [
        {
            "hash": f"0x{i:04x}",
            "from": src,
            "to": dst,
            "value": "100",
            "timestamp": BASE_TIME + i * HOUR,
        }
        for i, (src, dst) in enumerate(zip(names, names[1:]))
    ]


@pytest.fixture
def transfers_file(tmp_path):
    path = tmp_path / "transfers.json"
    path.write_text(json.dumps(chain_transfers()))
    return path


class TestLoaders:
    """Tests for snapshot loading."""

    def test_profiles_from_mapping(self):
        profiles = run_detection.load_profiles({"A": 60, "B": 10.5})
        assert [(p.address, p.risk_score) for p in profiles] == [("A", 60.0), ("B", 10.5)]

    def test_profiles_from_mapping_of_dicts(self):
        profiles = run_detection.load_profiles(
            {"A": {"risk_score": 75, "tags": ["sanctioned"]}, "B": 5}
        )
        assert profiles[0].address == "A"
        assert profiles[0].tags == ["sanctioned"]
        assert profiles[1].risk_score == 5.0

    def test_profiles_from_list(self):
        profiles = run_detection.load_profiles(
            [{"address": "A", "risk_score": 80, "tags": ["mixer"]}, {"address": "B"}]
        )
        assert profiles[0].tags == ["mixer"]
        assert profiles[1].risk_score == 0.0

    def test_load_ledger(self, transfers_file, tmp_path):
        profiles_path = tmp_path / "profiles.json"
        profiles_path.write_text(json.dumps({"A": 60}))

        ledger = run_detection.load_ledger(transfers_file, profiles_path)

        assert ledger.transfer_count == 4


class TestMain:
    """Tests for the script entry point."""

    def test_parse_args_repeats_address(self, transfers_file):
        args = run_detection.parse_args(
            ["--transfers", str(transfers_file), "--address", "A", "--address", "B"]
        )
        assert args.address == ["A", "B"]
        assert args.start is None

    def test_address_required(self, transfers_file):
        with pytest.raises(SystemExit):
            run_detection.parse_args(["--transfers", str(transfers_file)])

    def test_transfers_needed_without_ledger_api(self, monkeypatch):
        monkeypatch.setattr(run_detection.settings, "ledger_api_url", None)
        with pytest.raises(SystemExit):
            run_detection.parse_args(["--address", "A"])

    def test_ledger_api_used_without_transfers(self, monkeypatch):
        monkeypatch.setattr(run_detection.settings, "ledger_api_url", "http://ledger.test")
        args = run_detection.parse_args(["--address", "A"])
        assert args.transfers is None

    def test_writes_result_json(self, transfers_file, tmp_path):
        output = tmp_path / "result.json"

        code = run_detection.main(
            ["--transfers", str(transfers_file), "--address", "A", "--output", str(output)]
        )

        assert code == 0
        result = json.loads(output.read_text())
        assert result["stats"]["total_flows"] == 4
        assert result["stats"]["total_value"] == "400"
        assert result["stats"]["pattern_distribution"]["layering"] == 3
        assert result["alerts"]

    def test_detection_error_exit_code(self, transfers_file, monkeypatch):
        async def failing_run(args):
            raise MoneyLaunderingError("ledger unavailable", stage="analyze_flows")

        monkeypatch.setattr(run_detection, "run", failing_run)

        assert run_detection.main(["--transfers", str(transfers_file), "--address", "A"]) == 1
