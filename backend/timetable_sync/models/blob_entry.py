from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func

from timetable_sync.core.database import Base


class BlobEntry(Base):
    """One persisted key of the local school state (JSON text value)."""

    __tablename__ = "blob_entries"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
