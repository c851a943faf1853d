"""Date-group reconciliation for extracted lab markers.

Lab reports print dates in many shapes and sometimes carry results for
several visits. ``reconcile`` turns the extractor's flat marker list and raw
per-visit groups into canonical ``YYYY-MM-DD`` groups, newest first. Date
handling never fails hard: anything that cannot be read becomes today's date
plus an ``INVALID_DATE`` warning.
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from dateutil import parser as date_parser

from labsync.schemas.markers import DateGroup, Measurement, RawDateGroup, is_canonical_date
from labsync.schemas.upload import UploadError, UploadErrorCode

logger = logging.getLogger("labsync")

EMBEDDED_ISO_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
US_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")


def _calendar_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(raw: Optional[str]) -> Optional[str]:
    """Canonical form of ``raw``, or None when no rule can read it."""
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None

    # (a) already canonical
    if is_canonical_date(s):
        return s

    # (b) generic parse
    try:
        return date_parser.parse(s).date().isoformat()
    except (ValueError, OverflowError):
        pass

    # (c) embedded YYYY-MM-DD
    for m in EMBEDDED_ISO_DATE.finditer(s):
        found = _calendar_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if found is not None:
            return found.isoformat()

    # (d) M/D/YYYY
    for m in US_DATE.finditer(s):
        found = _calendar_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        if found is not None:
            return found.isoformat()

    return None


def standardize_date(raw: Optional[str], today: Optional[date] = None) -> Tuple[str, Optional[UploadError]]:
    """Return (YYYY-MM-DD, warning). The warning is set only when falling back to today."""
    parsed = parse_date(raw)
    if parsed is not None:
        return parsed, None
    fallback = (today or date.today()).isoformat()
    warning = UploadError(
        code=UploadErrorCode.INVALID_DATE,
        message=f"Could not parse date {raw!r}; using {fallback}.",
        details={"raw": raw, "fallback": fallback},
    )
    logger.warning({
        "function": "standardize_date",
        "raw": raw,
        "fallback": fallback,
    })
    return fallback, warning


def format_date(iso: str) -> str:
    """Display form, e.g. 'Mar 15, 2024'; unreadable input comes back unchanged."""
    try:
        d = date.fromisoformat(iso)
    except (TypeError, ValueError):
        return iso
    return f"{d.strftime('%b')} {d.day}, {d.year}"


def group_by_category(markers: Iterable[Measurement]) -> Dict[str, List[Measurement]]:
    grouped: Dict[str, List[Measurement]] = {}
    for marker in markers:
        if marker.value is None:
            continue
        grouped.setdefault(marker.category, []).append(marker)
    return grouped


class ReconciledExtraction:
    """The reviewed set of date groups for one extraction.

    ``has_multiple_dates`` is fixed when the extraction is reconciled and does
    not change however the groups are edited afterwards.
    """

    def __init__(
        self,
        groups: Sequence[DateGroup],
        has_multiple_dates: bool,
        warnings: Optional[List[UploadError]] = None,
        duplicate_dates: Optional[List[str]] = None,
    ):
        self._groups: List[DateGroup] = [g.model_copy(deep=True) for g in groups]
        self._has_multiple_dates = has_multiple_dates
        self.warnings: List[UploadError] = list(warnings or [])
        self.duplicate_dates: List[str] = list(duplicate_dates or [])
        self._selected = 0

    @property
    def has_multiple_dates(self) -> bool:
        return self._has_multiple_dates

    @property
    def groups(self) -> List[DateGroup]:
        return [g.model_copy(deep=True) for g in self._groups]

    @property
    def dates(self) -> List[str]:
        return [g.date for g in self._groups]

    def __len__(self) -> int:
        return len(self._groups)

    # ---- tab selection ----
    @property
    def selected_index(self) -> int:
        return self._selected

    def select(self, index: int) -> DateGroup:
        if not 0 <= index < len(self._groups):
            raise IndexError(f"no date group at index {index}")
        self._selected = index
        return self._groups[index].model_copy(deep=True)

    @property
    def active_group(self) -> Optional[DateGroup]:
        if not self._groups:
            return None
        return self._groups[self._selected].model_copy(deep=True)

    @property
    def active_markers(self) -> List[Measurement]:
        group = self.active_group
        return group.markers if group else []

    def grouped_markers(self, index: Optional[int] = None) -> Dict[str, List[Measurement]]:
        """Category -> markers for display; markers without a value are left out."""
        if not self._groups:
            return {}
        i = self._selected if index is None else index
        return group_by_category(m.model_copy() for m in self._groups[i].markers)

    def all_markers(self) -> List[Measurement]:
        return [m.model_copy() for g in self._groups for m in g.markers]

    def marker_count(self) -> int:
        return sum(len(g.markers) for g in self._groups)

    # ---- edits ----
    def replace_markers(self, index: int, markers: Iterable[Union[Measurement, Dict[str, Any]]]) -> None:
        self._groups[index] = DateGroup(
            date=self._groups[index].date,
            markers=[Measurement.model_validate(m) for m in markers],
        )

    def set_date(self, index: int, value: str) -> None:
        """Store a user-entered date as typed; it is re-checked when saving."""
        self._groups[index] = self._groups[index].model_copy(update={"date": (value or "").strip()})

    async def update_markers(
        self,
        index: int,
        markers: Iterable[Union[Measurement, Dict[str, Any]]],
        persist: Callable[[DateGroup], Awaitable[Optional[bool]]],
    ) -> bool:
        """Apply an edit locally, then persist it; restore the prior markers on failure.

        Returns False (after restoring) when ``persist`` returns False. If
        ``persist`` raises, the markers are restored and the error propagates.
        """
        snapshot = self._groups[index]
        self.replace_markers(index, markers)
        try:
            result = await persist(self._groups[index].model_copy(deep=True))
        except Exception:
            self._groups[index] = snapshot
            raise
        if result is False:
            self._groups[index] = snapshot
            return False
        return True

    def groups_for_save(self) -> List[DateGroup]:
        return self.groups


def _as_raw_group(item: Union[RawDateGroup, Dict[str, Any]]) -> RawDateGroup:
    if isinstance(item, RawDateGroup):
        return item
    return RawDateGroup.model_validate(item)


def reconcile(
    markers: Optional[Iterable[Union[Measurement, Dict[str, Any]]]],
    raw_groups: Optional[Iterable[Union[RawDateGroup, Dict[str, Any]]]],
    hint: Optional[str] = None,
    today: Optional[date] = None,
) -> ReconciledExtraction:
    """Build canonical date groups from one extraction.

    With at most one raw group the whole extraction is one group, dated by
    ``hint`` when it can be read and by today otherwise. With two or more,
    every raw group keeps its own entry (groups that land on the same date
    are not merged), sorted newest first.
    """
    today = today or date.today()
    flat = [Measurement.model_validate(m) for m in (markers or [])]
    raws = [_as_raw_group(g) for g in (raw_groups or [])]

    if len(raws) <= 1:
        group_date = parse_date(hint) or today.isoformat()
        group_markers = flat or (list(raws[0].markers) if raws else [])
        logger.info({
            "function": "reconcile",
            "mode": "single",
            "date": group_date,
            "markers": len(group_markers),
        })
        return ReconciledExtraction([DateGroup(date=group_date, markers=group_markers)], False)

    warnings: List[UploadError] = []
    entries: List[DateGroup] = []
    for raw in raws:
        iso, warning = standardize_date(raw.test_date, today)
        if warning is not None:
            warnings.append(warning)
        entries.append(DateGroup(date=iso, markers=list(raw.markers)))

    # ISO strings order chronologically; sorted() keeps ties in input order
    entries = sorted(entries, key=lambda g: g.date, reverse=True)
    counts = Counter(g.date for g in entries)
    duplicates = sorted((d for d, n in counts.items() if n > 1), reverse=True)
    if duplicates:
        logger.warning({
            "function": "reconcile",
            "status": "duplicate_dates",
            "dates": duplicates,
        })

    logger.info({
        "function": "reconcile",
        "mode": "multi",
        "groups": len(entries),
        "dates": [g.date for g in entries],
        "warnings": len(warnings),
    })
    return ReconciledExtraction(entries, True, warnings, duplicates)


__all__ = [
    "is_canonical_date",
    "parse_date",
    "standardize_date",
    "format_date",
    "group_by_category",
    "reconcile",
    "ReconciledExtraction",
]
