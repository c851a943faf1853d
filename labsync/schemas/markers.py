# labsync/schemas/markers.py
import re
from datetime import date as _date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SaveStatus = Literal["saved", "failed", "skipped"]

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)


def is_canonical_date(value: Optional[str]) -> bool:
    """True only for a real calendar date written as YYYY-MM-DD."""
    if not isinstance(value, str) or not ISO_DATE.match(value):
        return False
    try:
        _date.fromisoformat(value)
    except ValueError:
        return False
    return True


class Measurement(BaseModel):
    """One named clinical value extracted from a lab report."""

    name: str = Field(..., description="Marker name; not unique across dates.")
    value: Optional[float] = Field(None, description="Numeric value, or null when the report had none.")
    unit: str = Field("", description="Unit as printed on the report.")
    flag: Optional[Literal["High", "Low"]] = Field(None, description="Out-of-range flag.")
    category: str = Field("Other", description="Display grouping, e.g. 'Lipid Panel'.")

    @field_validator("flag", mode="before")
    @classmethod
    def _normalize_flag(cls, v):
        if v is None:
            return None
        s = str(v).strip().lower()
        if s in ("h", "high"):
            return "High"
        if s in ("l", "low"):
            return "Low"
        return None

    @field_validator("unit", "category", mode="before")
    @classmethod
    def _none_to_default(cls, v, info):
        if v is None:
            return "" if info.field_name == "unit" else "Other"
        return v


BloodMarker = Measurement


class RawDateGroup(BaseModel):
    """A date group as the extraction collaborator returns it."""

    model_config = ConfigDict(populate_by_name=True)

    test_date: Optional[str] = Field(None, alias="testDate")
    markers: List[Measurement] = Field(default_factory=list)


class DateGroup(BaseModel):
    date: str = Field(..., description="Canonical YYYY-MM-DD once reconciled.")
    markers: List[Measurement] = Field(default_factory=list)


class ExtractionRequest(BaseModel):
    text: str


class ExtractionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    markers: List[Measurement] = Field(default_factory=list)
    test_date: Optional[str] = Field(None, alias="testDate")
    date_groups: List[RawDateGroup] = Field(default_factory=list, alias="dateGroups")
    has_multiple_dates: bool = Field(False, alias="hasMultipleDates")
    error: Optional[str] = None


class GroupSaveRequest(BaseModel):
    markers: List[Measurement]
    date: str

    @field_validator("date")
    @classmethod
    def _canonical_date(cls, v: str) -> str:
        if not is_canonical_date(v):
            raise ValueError("date must be a valid YYYY-MM-DD date")
        return v


class GroupSaveResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    id: Optional[str] = None


class BloodMarkerEntryUpdate(BaseModel):
    date: Optional[str] = None
    markers: Optional[List[Measurement]] = None


class BloodMarkerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    date: str
    markers: List[Measurement]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SaveOutcome(BaseModel):
    index: int
    date: str
    status: SaveStatus
    markers_saved: int = 0
    error: Optional[str] = None


class SaveReport(BaseModel):
    """Per-group outcomes of one save pass plus the aggregate counts."""

    outcomes: List[SaveOutcome] = Field(default_factory=list)
    saved: int = 0
    failed: int = 0
    skipped: int = 0
    total_markers_saved: int = 0
    errors: List[str] = Field(default_factory=list)

    def record(self, outcome: SaveOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == "saved":
            self.saved += 1
            self.total_markers_saved += outcome.markers_saved
        elif outcome.status == "failed":
            self.failed += 1
        else:
            self.skipped += 1
        if outcome.error:
            self.errors.append(outcome.error)

    @property
    def summary(self) -> str:
        return f"{self.saved} saved / {self.failed} failed / {self.skipped} skipped"


class BloodMarkerEntryList(BaseModel):
    success: bool = True
    data: List[BloodMarkerEntryOut] = Field(default_factory=list)


class BloodMarkerEntryResult(BaseModel):
    success: bool = True
    data: BloodMarkerEntryOut
