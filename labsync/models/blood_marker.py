# labsync/models/blood_marker.py
import uuid
from datetime import datetime
from typing import Any, List

from sqlalchemy import String, DateTime, text
from sqlalchemy.orm import Mapped, mapped_column

from labsync.db.session import Base
from labsync.utils.encryption import EncryptedJSON


class BloodMarkerEntry(Base):
    """One saved date group: every marker from a report for a single test date."""

    __tablename__ = "blood_marker_entries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    # canonical YYYY-MM-DD; sorts chronologically as text
    date: Mapped[str] = mapped_column(String(10), index=True, nullable=False)
    markers: Mapped[List[Any]] = mapped_column(EncryptedJSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
    )
