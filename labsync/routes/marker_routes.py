# labsync/routes/marker_routes.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from labsync.db.session import get_db
from labsync.models.blood_marker import BloodMarkerEntry
from labsync.routes.deps import get_user_id
from labsync.schemas.markers import (
    BloodMarkerEntryList,
    BloodMarkerEntryOut,
    BloodMarkerEntryResult,
    BloodMarkerEntryUpdate,
    GroupSaveRequest,
    GroupSaveResponse,
    is_canonical_date,
)

router = APIRouter(prefix="/api/blood-markers", tags=["blood-markers"])
logger = logging.getLogger("labsync")


def _to_out(entry: BloodMarkerEntry) -> BloodMarkerEntryOut:
    return BloodMarkerEntryOut(
        id=entry.id,
        user_id=entry.user_id,
        date=entry.date,
        # undecryptable rows read back as None
        markers=entry.markers or [],
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def _owned_entry(db: Session, entry_id: str, user_id: str) -> BloodMarkerEntry:
    entry = (
        db.query(BloodMarkerEntry)
        .filter(BloodMarkerEntry.id == entry_id, BloodMarkerEntry.user_id == user_id)
        .first()
    )
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


def _check_bound(name: str, value: Optional[str]) -> None:
    if value is not None and not is_canonical_date(value):
        raise HTTPException(status_code=400, detail=f"{name} must be YYYY-MM-DD")


@router.post("", response_model=GroupSaveResponse, status_code=status.HTTP_201_CREATED)
def save_group(
    payload: GroupSaveRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    """Persist one date group as one entry (one transaction per group)."""
    entry = BloodMarkerEntry(
        user_id=user_id,
        date=payload.date,
        markers=[m.model_dump() for m in payload.markers],
    )
    try:
        db.add(entry)
        db.commit()
        db.refresh(entry)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error({"function": "save_group", "date": payload.date, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to save blood markers")

    logger.info({
        "function": "save_group",
        "user_id": user_id,
        "date": payload.date,
        "markers": len(payload.markers),
    })
    return GroupSaveResponse(success=True, message="Blood markers saved", id=entry.id)


@router.get("", response_model=BloodMarkerEntryList)
def list_entries(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    _check_bound("startDate", startDate)
    _check_bound("endDate", endDate)

    query = db.query(BloodMarkerEntry).filter(BloodMarkerEntry.user_id == user_id)
    # canonical dates order correctly as text
    if startDate:
        query = query.filter(BloodMarkerEntry.date >= startDate)
    if endDate:
        query = query.filter(BloodMarkerEntry.date <= endDate)
    items = query.order_by(BloodMarkerEntry.date.desc(), BloodMarkerEntry.created_at.desc()).all()

    out: List[BloodMarkerEntryOut] = [_to_out(e) for e in items]
    if category:
        # markers are encrypted at rest, so the category filter runs here
        out = [e for e in out if any(m.category == category for m in e.markers)]
    return BloodMarkerEntryList(success=True, data=out)


@router.put("/{entry_id}", response_model=BloodMarkerEntryResult)
def update_entry(
    entry_id: str,
    payload: BloodMarkerEntryUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    entry = _owned_entry(db, entry_id, user_id)
    if payload.date is not None:
        _check_bound("date", payload.date)
        entry.date = payload.date
    if payload.markers is not None:
        entry.markers = [m.model_dump() for m in payload.markers]
    try:
        db.commit()
        db.refresh(entry)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error({"function": "update_entry", "id": entry_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to update blood marker entry")
    return BloodMarkerEntryResult(success=True, data=_to_out(entry))


@router.delete("/{entry_id}", response_model=GroupSaveResponse)
def delete_entry(
    entry_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    entry = _owned_entry(db, entry_id, user_id)
    try:
        db.delete(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error({"function": "delete_entry", "id": entry_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to delete blood marker entry")
    logger.info({"function": "delete_entry", "user_id": user_id, "id": entry_id})
    return GroupSaveResponse(success=True, message="Entry deleted", id=entry_id)
