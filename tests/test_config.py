"""Tests for persisted journal configuration."""

from __future__ import annotations

import json

import pytest

from tradejournal.config import settings


class TestJournalConfig:

    def test_update_persists_and_hot_patches(self) -> None:
        saved = settings.update_journal_config({"accounting_method": "cash"})
        assert saved["accounting_method"] == "cash"
        assert settings.ACCOUNTING_METHOD == "cash"
        assert settings.USE_CASH_BASIS
        on_disk = json.loads(settings.JOURNAL_CONFIG_PATH.read_text(encoding="utf-8"))
        assert on_disk == {"accounting_method": "cash"}

    def test_partial_updates_merge(self) -> None:
        settings.update_journal_config({"accounting_method": "cash"})
        merged = settings.update_journal_config({"default_portfolio_size": 250000})
        assert merged == {"accounting_method": "cash", "default_portfolio_size": 250000}
        assert settings.DEFAULT_PORTFOLIO_SIZE == 250000.0

    def test_invalid_values_ignored(self) -> None:
        settings.update_journal_config({"accounting_method": "barter", "default_portfolio_size": -5})
        assert settings.ACCOUNTING_METHOD == "accrual"
        assert settings.DEFAULT_PORTFOLIO_SIZE == 100000.0

    def test_corrupted_file_keeps_defaults(self) -> None:
        settings.JOURNAL_CONFIG_PATH.write_text("{not json", encoding="utf-8")
        settings.load_journal_config()
        assert settings.ACCOUNTING_METHOD == "accrual"
        assert settings.get_journal_config()["default_portfolio_size"] == 100000.0

    def test_unusable_number_rejected_before_write(self) -> None:
        settings.update_journal_config({"accounting_method": "cash"})
        with pytest.raises(ValueError):
            settings.update_journal_config({"default_portfolio_size": "lots"})
        on_disk = json.loads(settings.JOURNAL_CONFIG_PATH.read_text(encoding="utf-8"))
        assert on_disk == {"accounting_method": "cash"}
        assert settings.DEFAULT_PORTFOLIO_SIZE == 100000.0
