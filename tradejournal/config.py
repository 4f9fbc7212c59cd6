"""Application configuration — environment variables and defaults.

The portfolio fallback size and the accounting convention live HERE.
Persistent journal settings are stored in user_config/journal_config.json.
"""

import json
import os
from pathlib import Path
from typing import Any

ACCOUNTING_METHODS = ("accrual", "cash")


class Settings:
    """Central configuration pulled from environment with safe defaults."""

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_DIR: Path = Path(os.getenv("JOURNAL_DATA_DIR", str(BASE_DIR / "data")))
    LOGS_DIR: Path = BASE_DIR / "logs"
    USER_CONFIG_DIR: Path = Path(__file__).resolve().parent / "user_config"

    # Database
    DB_PATH: Path = DATA_DIR / "trade_journal.duckdb"

    # ── Portfolio defaults ─────────────────────────────────────────
    # Used whenever no starting capital is configured or a lookup fails
    DEFAULT_PORTFOLIO_SIZE: float = float(os.getenv("DEFAULT_PORTFOLIO_SIZE", "100000"))

    # "accrual" | "cash"
    ACCOUNTING_METHOD: str = os.getenv("ACCOUNTING_METHOD", "accrual")

    # Batch edits arriving within this window into one recalculation
    RECALC_DEBOUNCE_SECONDS: float = float(os.getenv("RECALC_DEBOUNCE_SECONDS", "0.3"))

    # ── XIRR solver ───────────────────────────────────────────────
    XIRR_MAX_ITERATIONS: int = int(os.getenv("XIRR_MAX_ITERATIONS", "100"))
    XIRR_TOLERANCE: float = float(os.getenv("XIRR_TOLERANCE", "1e-7"))
    XIRR_GUESS: float = float(os.getenv("XIRR_GUESS", "0.1"))

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # ── Journal config JSON path ──────────────────────────────────
    JOURNAL_CONFIG_PATH: Path = USER_CONFIG_DIR / "journal_config.json"

    @property
    def USE_CASH_BASIS(self) -> bool:
        """Computed: True when the active convention is cash basis."""
        return self.ACCOUNTING_METHOD == "cash"

    def __init__(self) -> None:
        """Ensure runtime directories exist and load persisted journal config."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        self.load_journal_config()

    # ── Persistent journal configuration ──────────────────────────

    def load_journal_config(self) -> None:
        """Load journal settings from journal_config.json, overriding env-var defaults."""
        if not self.JOURNAL_CONFIG_PATH.exists():
            return
        try:
            data = json.loads(self.JOURNAL_CONFIG_PATH.read_text(encoding="utf-8"))
            self._apply_journal_config(data)
        except (json.JSONDecodeError, OSError, ValueError):
            pass  # Corrupted file: keep the defaults

    @staticmethod
    def _parse_journal_config(data: dict[str, Any]) -> dict[str, Any]:
        """Typed values from a config dict; unknown or out-of-range values are dropped.

        Raises ValueError when a numeric setting is not a number.
        """
        parsed: dict[str, Any] = {}
        if data.get("accounting_method") in ACCOUNTING_METHODS:
            parsed["accounting_method"] = str(data["accounting_method"])
        for key in ("default_portfolio_size", "recalc_debounce_seconds"):
            if key not in data:
                continue
            try:
                parsed[key] = float(data[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"{key} must be a number, got {data[key]!r}") from e
        if parsed.get("default_portfolio_size", 1.0) <= 0:
            del parsed["default_portfolio_size"]
        return parsed

    def _apply_journal_config(self, data: dict[str, Any]) -> None:
        """Apply a config dict to the running settings instance."""
        parsed = self._parse_journal_config(data)
        if "accounting_method" in parsed:
            self.ACCOUNTING_METHOD = parsed["accounting_method"]
        if "default_portfolio_size" in parsed:
            self.DEFAULT_PORTFOLIO_SIZE = parsed["default_portfolio_size"]
        if "recalc_debounce_seconds" in parsed:
            self.RECALC_DEBOUNCE_SECONDS = max(0.0, parsed["recalc_debounce_seconds"])

    def update_journal_config(self, data: dict[str, Any]) -> dict[str, Any]:
        """Write new journal settings to disk and hot-patch the running singleton.

        Returns the saved config dict. Raises ValueError, leaving the file
        and the running settings untouched, when a value is not usable.
        """
        # Merge with existing file (so partial updates work)
        existing: dict[str, Any] = {}
        if self.JOURNAL_CONFIG_PATH.exists():
            try:
                existing = json.loads(
                    self.JOURNAL_CONFIG_PATH.read_text(encoding="utf-8")
                )
            except (json.JSONDecodeError, OSError):
                pass

        merged = {**existing, **data}
        self._parse_journal_config(merged)
        self.JOURNAL_CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        self.JOURNAL_CONFIG_PATH.write_text(
            json.dumps(merged, indent=4) + "\n", encoding="utf-8"
        )

        # Hot-patch the running singleton
        self._apply_journal_config(merged)
        return merged

    def get_journal_config(self) -> dict[str, Any]:
        """Return the current journal configuration as a dict."""
        return {
            "accounting_method": self.ACCOUNTING_METHOD,
            "default_portfolio_size": self.DEFAULT_PORTFOLIO_SIZE,
            "recalc_debounce_seconds": self.RECALC_DEBOUNCE_SECONDS,
        }


settings = Settings()
