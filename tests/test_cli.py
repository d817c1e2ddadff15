"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from src.cli import cli
from src.utils.config import get_config


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def use_service(monkeypatch, service):
    """Make every CLI command use the fake-store service."""
    monkeypatch.setattr("src.cli.InventoryService", lambda: service)
    return service


def _doc_id(store, barcode):
    return next(p.id for p in store.documents.values() if p.barcode == barcode)


class TestCli:

    def test_lookup_found(self, runner, use_service):
        result = runner.invoke(cli, ["lookup", "0001"])

        assert result.exit_code == 0
        assert "Product found" in result.output
        assert "Widget" in result.output

    def test_lookup_json(self, runner, use_service):
        result = runner.invoke(cli, ["lookup", "0002", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["name"] == "gadget"
        assert data["price"] == "9.99"

    def test_lookup_missing(self, runner, use_service):
        result = runner.invoke(cli, ["lookup", "9999"])

        assert result.exit_code == 1
        assert "No product with barcode 9999" in result.output

    def test_lookup_store_down(self, runner, use_service, store, store_down):
        store.failure = store_down

        result = runner.invoke(cli, ["lookup", "0001"])

        assert result.exit_code == 1
        assert "store_unavailable" in result.output

    def test_stock_out(self, runner, use_service, store):
        result = runner.invoke(cli, ["stock-out", "0001", "-q", "3"])

        assert result.exit_code == 0
        assert "10 → 7" in result.output
        assert store.documents[_doc_id(store, "0001")].quantity == 7

    def test_stock_out_insufficient(self, runner, use_service):
        result = runner.invoke(cli, ["stock-out", "0002", "-q", "4"])

        assert result.exit_code == 1
        assert "insufficient_quantity" in result.output

    def test_stock_out_json(self, runner, use_service):
        result = runner.invoke(cli, ["stock-out", "0001", "-q", "2", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["previous_quantity"] == 10
        assert data["new_quantity"] == 8
        assert data["direction"] == "out"

    def test_stock_in(self, runner, use_service):
        result = runner.invoke(cli, ["stock-in", "0002", "--quantity", "5"])

        assert result.exit_code == 0
        assert "3 → 8" in result.output

    def test_add(self, runner, use_service, store):
        result = runner.invoke(cli, ["add", "B-7", "Washer", "-q", "40", "--price", "0.02"])

        assert result.exit_code == 0
        assert "Product added" in result.output
        assert any(p.barcode == "B-7" and p.quantity == 40 for p in store.documents.values())

    def test_add_duplicate(self, runner, use_service):
        result = runner.invoke(cli, ["add", "0001", "Copy"])

        assert result.exit_code == 1
        assert "conflict" in result.output

    def test_edit(self, runner, use_service, store):
        doc_id = _doc_id(store, "0002")

        result = runner.invoke(cli, ["edit", doc_id, "--name", "Gadget Pro", "--quantity", "9"])

        assert result.exit_code == 0
        assert store.documents[doc_id].name == "Gadget Pro"
        assert store.documents[doc_id].quantity == 9

    def test_list(self, runner, use_service):
        result = runner.invoke(cli, ["list", "--sort", "quantity", "--desc"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[2].startswith("Bolt M6")
        assert "Products: 3" in result.output
        assert "Total quantity: 263" in result.output

    def test_list_search_no_match(self, runner, use_service):
        result = runner.invoke(cli, ["list", "--search", "zzz"])

        assert result.exit_code == 0
        assert 'No products match "zzz"' in result.output

    def test_scan_from_input(self, runner, use_service, store):
        result = runner.invoke(
            cli,
            ["scan", "--mode", "out", "--cooldown", "0"],
            input="0001\n0001\n9999\n",
        )

        assert result.exit_code == 0
        assert "Scanned: 3" in result.output
        assert "Adjusted: 2" in result.output
        assert "9999: not found" in result.output
        assert store.documents[_doc_id(store, "0001")].quantity == 8

    def test_scan_json(self, runner, use_service):
        result = runner.invoke(
            cli,
            ["scan", "--mode", "lookup", "--cooldown", "0", "--json"],
            input="0001\n9999\n",
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["scanned_count"] == 2
        assert data["missing_count"] == 1

    def test_test_connection(self, runner, use_service):
        result = runner.invoke(cli, ["test-connection"])

        assert result.exit_code == 0
        assert "Connected successfully" in result.output

    def test_config_info(self, runner):
        result = runner.invoke(cli, ["config-info"])

        assert result.exit_code == 0
        assert "test-project" in result.output
        assert "test-k..." in result.output

    def test_missing_project_is_configuration_error(self, runner, monkeypatch):
        monkeypatch.delenv("FIRESTORE_PROJECT_ID")
        get_config.cache_clear()

        result = runner.invoke(cli, ["lookup", "0001"])

        assert result.exit_code == 1
        assert "configuration" in result.output
