"""Subscription channel for save-pass notifications.

The caller creates a ``SaveEvents`` object, subscribes to it and hands it to
the save orchestrator, which is the only code that emits on it.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List

from labsync.schemas.markers import SaveReport

logger = logging.getLogger("labsync")

DATA_CHANGED = "data_changed"
GROUPS_FAILED = "groups_failed"

Listener = Callable[[SaveReport], None]


class SaveEvents:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {DATA_CHANGED: [], GROUPS_FAILED: []}

    def subscribe(self, kind: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that removes it again."""
        if kind not in self._listeners:
            raise ValueError(f"unknown event kind: {kind}")
        self._listeners[kind].append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners[kind]:
                self._listeners[kind].remove(listener)

        return _unsubscribe

    def on_data_changed(self, listener: Listener) -> Callable[[], None]:
        return self.subscribe(DATA_CHANGED, listener)

    def on_groups_failed(self, listener: Listener) -> Callable[[], None]:
        return self.subscribe(GROUPS_FAILED, listener)

    def emit(self, kind: str, report: SaveReport) -> None:
        for listener in list(self._listeners[kind]):
            try:
                listener(report)
            except Exception:
                # one bad subscriber must not hide the event from the rest
                logger.exception("save event listener failed")


__all__ = ["SaveEvents", "DATA_CHANGED", "GROUPS_FAILED"]
