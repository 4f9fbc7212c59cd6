"""Tests for component-tagged logging and run-file pruning."""

from __future__ import annotations

import logging
import os

from tradejournal.utils.logger import ROOT_NAME, ComponentFilter, _prune_runs, get_logger


class TestLogger:

    def test_component_loggers_share_the_journal_handlers(self) -> None:
        log = get_logger("Store")
        assert log.name == f"{ROOT_NAME}.Store"
        assert log.parent is logging.getLogger(ROOT_NAME)
        assert logging.getLogger(ROOT_NAME).handlers

    def test_records_are_tagged_with_component(self) -> None:
        record = logging.LogRecord(f"{ROOT_NAME}.Recalc", logging.INFO, __file__, 1, "hi", None, None)
        assert ComponentFilter().filter(record)
        assert record.component == "Recalc"

        outside = logging.LogRecord(ROOT_NAME, logging.INFO, __file__, 1, "hi", None, None)
        ComponentFilter().filter(outside)
        assert outside.component == "Journal"

    def test_prune_keeps_ten_newest_runs(self, tmp_path) -> None:
        for idx in range(12):
            run = tmp_path / f"{ROOT_NAME}_2024-01-{idx + 1:02d}.log"
            run.write_text("", encoding="utf-8")
            os.utime(run, (1_700_000_000 + idx, 1_700_000_000 + idx))
        current = tmp_path / f"{ROOT_NAME}.log"
        current.write_text("", encoding="utf-8")

        _prune_runs(tmp_path)

        remaining = sorted(p.name for p in tmp_path.glob(f"{ROOT_NAME}_*.log"))
        assert len(remaining) == 10
        assert f"{ROOT_NAME}_2024-01-01.log" not in remaining
        assert f"{ROOT_NAME}_2024-01-02.log" not in remaining
        assert current.exists()
