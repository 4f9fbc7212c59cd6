import pytest
from unittest.mock import patch

from tradejournal.config import settings
from tradejournal.database import close_db


@pytest.fixture(autouse=True)
def use_test_db(tmp_path):
    # Route every test to its own DuckDB file and journal config so tests
    # never touch the real journal or leak state into each other
    close_db()
    with patch.object(settings, "DB_PATH", tmp_path / "test_trade_journal.duckdb"), \
            patch.object(settings, "JOURNAL_CONFIG_PATH", tmp_path / "journal_config.json"), \
            patch.object(settings, "ACCOUNTING_METHOD", "accrual"), \
            patch.object(settings, "DEFAULT_PORTFOLIO_SIZE", 100000.0), \
            patch.object(settings, "RECALC_DEBOUNCE_SECONDS", 0.0):
        yield
    close_db()
