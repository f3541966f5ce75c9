"""Unit tests for the command-line interface."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest

from purchase_scanner import cli
from purchase_scanner.extraction import PurchaseExtractor
from purchase_scanner.models import OrderMetadata, ParsedItem
from purchase_scanner.wardrobe import PurchaseRepository


@pytest.fixture
def settings(mock_settings, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    settings = mock_settings.model_copy(
        update={
            "gmail_credentials_path": tmp_path / "missing-credentials.json",
            "gmail_token_dir": tmp_path / "tokens",
            "purchases_db_path": tmp_path / "purchases.db",
        }
    )
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


def test_parse_prints_purchase_and_verdicts(
    settings, make_extractor, levi_order_html, levi_oracle_response, tmp_path, monkeypatch, capsys
) -> None:
    extractor, _ = make_extractor(levi_oracle_response)
    monkeypatch.setattr(PurchaseExtractor, "from_settings", staticmethod(lambda settings, backend=None: extractor))
    body = tmp_path / "levi.html"
    body.write_text(levi_order_html, encoding="utf-8")
    capsys.readouterr()

    code = cli.main(
        ["parse", str(body), "--subject", "Your Levi's order #LS1234567 is confirmed", "--from", "Levi's <orders@email.levi.com>"]
    )

    output = json.loads(capsys.readouterr().out)
    assert code == 0
    assert output["purchase"]["order_number"] == "LS1234567"
    assert [item["name"] for item in output["purchase"]["items"]] == ["Levi's 501 Original Fit Jeans"]
    assert "verdicts" not in output["purchase"]
    assert output["verdicts"][0]["accepted"] is True
    assert output["verdicts"][0]["reason"] == "grounded-keywords"


def test_purchases_lists_rows_and_stats(settings, capsys) -> None:
    repo = PurchaseRepository(settings.purchases_db_path)
    repo.initialize()
    repo.record_purchase(
        "me@example.com",
        ParsedItem(name="Relaxed Linen Camp Shirt", type="shirt", price=45.0),
        OrderMetadata(email_id="m1", order_number="A1234567", store="Madewell", purchase_date=date(2024, 3, 15)),
    )

    code = cli.main(["purchases", "--account", "me@example.com"])

    out = capsys.readouterr().out
    assert code == 0
    assert "2024-03-15\tMadewell\tRelaxed Linen Camp Shirt\tshirt\t45.00" in out
    assert "1 items in 1 orders from 1 stores (45.00 spent)" in out


def test_purchases_uses_configured_rule_tables(settings, rule_tables, tmp_path: Path, monkeypatch, capsys) -> None:
    custom = tmp_path / "tables.json"
    settings = settings.model_copy(update={"rule_tables_path": custom})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    requested: list[Path | None] = []

    def fake_load(path=None):
        requested.append(path)
        return rule_tables

    monkeypatch.setattr(cli, "load_rule_tables", fake_load)

    code = cli.main(["purchases", "--account", "me@example.com"])

    assert code == 0
    assert requested == [custom]


def test_scan_without_credentials_fails_cleanly(settings, capsys) -> None:
    code = cli.main(["scan", "--account", "me@example.com", "--days", "7"])

    assert code == 1
    assert "Gmail credentials file not found" in capsys.readouterr().err


def test_version(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])

    assert excinfo.value.code == 0
    assert "purchase-scanner 0.1.0" in capsys.readouterr().out
