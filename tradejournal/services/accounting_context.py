"""Accounting Context — the active convention plus change notification.

The convention ("accrual" or "cash") is persisted through the journal
config so it survives restarts. Listeners are called synchronously after
the value actually changes; a listener that raises is logged and skipped
so one bad subscriber can't block the others.
"""

from __future__ import annotations

from collections.abc import Callable

from tradejournal.config import ACCOUNTING_METHODS, settings
from tradejournal.utils.logger import get_logger

logger = get_logger("Accounting")

Listener = Callable[[str], None]


class AccountingContext:
    """Holds the accounting method and notifies subscribers on change."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def method(self) -> str:
        return settings.ACCOUNTING_METHOD

    @property
    def use_cash_basis(self) -> bool:
        return settings.USE_CASH_BASIS

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set_method(self, method: str) -> bool:
        """Switch convention. Returns True if the value changed.

        Raises ValueError for anything but "accrual" or "cash".
        """
        method = (method or "").strip().lower()
        if method not in ACCOUNTING_METHODS:
            raise ValueError(f"Unknown accounting method: {method!r}")
        if method == settings.ACCOUNTING_METHOD:
            return False

        settings.update_journal_config({"accounting_method": method})
        logger.info("Method changed to %s", method)
        for listener in list(self._listeners):
            try:
                listener(method)
            except Exception:
                logger.warning("Listener %r failed", listener, exc_info=True)
        return True
