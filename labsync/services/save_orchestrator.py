"""Persist reconciled date groups one at a time with partial-failure accounting.

Each group is its own transaction on the storage side. A group that fails
does not undo groups saved before it, and the pass ends with at most one
"data changed" and at most one "some groups failed" notification.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, Optional, Union

from labsync.schemas.markers import DateGroup, SaveOutcome, SaveReport
from labsync.services.events import DATA_CHANGED, GROUPS_FAILED, SaveEvents
from labsync.services.reconciler import ReconciledExtraction, is_canonical_date

logger = logging.getLogger("labsync")

PerGroupSave = Callable[[DateGroup], Awaitable[Optional[bool]]]


def _saved(index: int, group: DateGroup) -> SaveOutcome:
    return SaveOutcome(index=index, date=group.date, status="saved", markers_saved=len(group.markers))


def _failed(index: int, group: DateGroup, message: str) -> SaveOutcome:
    return SaveOutcome(index=index, date=group.date, status="failed", error=message)


def _notify(report: SaveReport, events: Optional[SaveEvents]) -> None:
    if events is None:
        return
    if report.saved > 0:
        events.emit(DATA_CHANGED, report)
    if report.failed > 0 or report.skipped > 0:
        events.emit(GROUPS_FAILED, report)


async def save_all(
    groups: Iterable[DateGroup],
    per_group_save: PerGroupSave,
    events: Optional[SaveEvents] = None,
) -> SaveReport:
    """Save every group in the given order and report per-group outcomes.

    A single group is handed straight to ``per_group_save``; if that raises,
    the error reaches the caller untouched. With two or more groups each save
    is awaited in turn: a group whose date is not a valid ``YYYY-MM-DD`` is
    skipped, one whose save raises or returns ``False`` is failed, and the
    rest are saved.
    """
    groups = list(groups)
    report = SaveReport()
    if not groups:
        return report

    if len(groups) == 1:
        group = groups[0]
        result = await per_group_save(group)
        if result is False:
            report.record(_failed(0, group, f"Failed to save markers for {group.date}"))
        else:
            report.record(_saved(0, group))
        _notify(report, events)
        return report

    for index, group in enumerate(groups):
        if not is_canonical_date(group.date):
            logger.warning({
                "function": "save_all",
                "status": "skipped",
                "group": index,
                "date": group.date,
            })
            report.record(SaveOutcome(
                index=index,
                date=group.date,
                status="skipped",
                error=f"Skipped group {index + 1}: invalid date {group.date!r}",
            ))
            continue

        try:
            result = await per_group_save(group)
        except Exception as exc:
            logger.error({
                "function": "save_all",
                "status": "failed",
                "group": index,
                "date": group.date,
                "error": str(exc),
            })
            report.record(_failed(index, group, f"Error saving group {index + 1} ({group.date}): {exc}"))
            continue

        if result is False:
            logger.error({"function": "save_all", "status": "failed", "group": index, "date": group.date})
            report.record(_failed(index, group, f"Failed to save group {index + 1} ({group.date})"))
        else:
            report.record(_saved(index, group))

    logger.info({
        "function": "save_all",
        "saved": report.saved,
        "failed": report.failed,
        "skipped": report.skipped,
        "markers": report.total_markers_saved,
    })
    _notify(report, events)
    return report


class SaveOrchestrator:
    """``save_all`` bound to one persistence call and one event channel."""

    def __init__(self, per_group_save: PerGroupSave, events: Optional[SaveEvents] = None):
        self._per_group_save = per_group_save
        self.events = events or SaveEvents()

    async def save(self, groups: Union[ReconciledExtraction, Iterable[DateGroup]]) -> SaveReport:
        if isinstance(groups, ReconciledExtraction):
            groups = groups.groups_for_save()
        return await save_all(groups, self._per_group_save, self.events)


__all__ = ["save_all", "SaveOrchestrator", "PerGroupSave"]
