"""Tests for the evaluate_bill command-line entry point."""
import json
import os

import pytest

from evaluate_bill import build_parser, main

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")
RESIDENTIAL = os.path.join(FIXTURES_DIR, "residential_bill.txt")
COMMERCIAL = os.path.join(FIXTURES_DIR, "commercial_bill.txt")


class TestArguments:

    def test_defaults(self):
        args = build_parser().parse_args(["bill.txt"])
        assert args.rules == []
        assert args.valuation is None
        assert args.json is False

    def test_repeatable_rules(self):
        args = build_parser().parse_args(["bill.txt", "--rules", "a.json", "--rules", "b.json"])
        assert args.rules == ["a.json", "b.json"]


class TestMain:

    def test_clean_bill_exits_zero(self, capsys):
        assert main([RESIDENTIAL]) == 0
        out = capsys.readouterr().out
        assert "Account 550123456789" in out
        assert "Recommendation: do_nothing" in out

    def test_issue_exits_one(self, capsys):
        assert main([COMMERCIAL]) == 1
        out = capsys.readouterr().out
        assert "[ESTIMATED]" in out
        assert "Recommendation: escalate" in out

    def test_json_output(self, capsys):
        main([COMMERCIAL, "--json"])
        payload = json.loads(capsys.readouterr().out)
        assert payload["verification"]["summary"]["likely_wrong"] == 1
        assert "raw_text" not in payload["bill"]
        assert [a["service_type"] for a in payload["missing_tariffs"]] == ["refuse"]

    def test_extra_rule_file(self, tmp_path, capsys):
        rules = tmp_path / "extra.json"
        rules.write_text(json.dumps([{
            "id": "pikitup-business-2025-26",
            "provider": "pikitup",
            "service_type": "refuse",
            "customer_category": "commercial",
            "financial_year": "2025/26",
            "effective_date": "2025-07-01",
            "pricing_structure": {"residential_charge": 0, "business_charge": 680600},
        }]))
        main([COMMERCIAL, "--json", "--rules", str(rules)])
        payload = json.loads(capsys.readouterr().out)
        assert payload["missing_tariffs"] == []

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            main(["/no/such/bill.txt"])
