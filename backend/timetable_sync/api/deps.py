"""
Shared dependencies for the API routers.
"""
import logging
from typing import Optional

from timetable_sync.core.database import SessionLocal, init_db
from timetable_sync.services.blob_store import SqlAlchemyBlobStore
from timetable_sync.services.school_data import SchoolDataService

logger = logging.getLogger(__name__)

_school_data: Optional[SchoolDataService] = None


def get_school_data() -> SchoolDataService:
    """Process-wide school data service, loaded from the blob store on first use."""
    global _school_data
    if _school_data is None:
        init_db()
        _school_data = SchoolDataService(blob_store=SqlAlchemyBlobStore(SessionLocal))
        _school_data.load()
        logger.info(f"Loaded school data for '{_school_data.school_name}'")
    return _school_data


def reset_school_data() -> None:
    global _school_data
    _school_data = None
