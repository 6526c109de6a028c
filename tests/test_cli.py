"""
Tests for pipeline wiring and the command line.
"""
import json

import pytest
from typer.testing import CliRunner

import main
from core.config import get_settings
from core.exceptions import ConfigurationError
from services.categorization_service import CategorizationService
from services.factory import build_service

runner = CliRunner()


def test_build_service_requires_credentials():
    with pytest.raises(ConfigurationError):
        build_service(get_settings())


def test_build_service_wires_pipeline(monkeypatch):
    monkeypatch.setenv("LEDGER_API_KEY", "ledger-key")
    monkeypatch.setenv("LEDGER_BUDGET_ID", "budget-1")
    monkeypatch.setenv("CLASSIFIER_API_KEY", "classifier-key")
    monkeypatch.setenv("SINCE_DAYS", "3")

    service = build_service(get_settings())

    assert isinstance(service, CategorizationService)
    assert service.since_days == 3
    assert service.decider.auto_approve_threshold == 0.95
    assert service.ledger.limiter.max_requests == 200


def test_seed_imports_example_rules():
    result = runner.invoke(main.app, ["seed"])

    assert result.exit_code == 0
    assert f"Imported {len(main.EXAMPLE_MERCHANT_RULES)} merchant rules" in result.output


def test_seed_from_rules_file(tmp_path):
    rules_file = tmp_path / "rules.json"
    rules_file.write_text(json.dumps([{"merchant_name": "Costco", "category_name": "Groceries"}]))

    result = runner.invoke(main.app, ["seed", "--rules-file", str(rules_file)])

    assert result.exit_code == 0
    assert "Imported 1 merchant rules (0 errors)" in result.output


def test_run_exits_nonzero_without_credentials():
    result = runner.invoke(main.app, ["run"])
    assert result.exit_code == 1


def test_stats_reports_store_and_usage():
    runner.invoke(main.app, ["seed"])

    result = runner.invoke(main.app, ["stats"])

    assert result.exit_code == 0
    assert '"total_merchants": 7' in result.output
    assert '"classifier"' in result.output
