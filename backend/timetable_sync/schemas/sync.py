"""
Pydantic schemas for replication and pairing
"""

from pydantic import Field
from typing import List, Dict, Any, Optional
from enum import Enum

from timetable_sync.schemas.timetable import CamelModel, EntityProfile, Student, TimeSlot


class ConnectionState(str, Enum):
    """Replication connection states"""
    OFFLINE = "OFFLINE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    SYNCING = "SYNCING"
    ERROR = "ERROR"


class SyncRole(str, Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STANDALONE = "STANDALONE"


class SyncGroup(str, Enum):
    """Top-level groups of the remote school node"""
    METADATA = "metadata"
    REGISTRY = "registry"
    TIMING = "timing"
    ATTENDANCE = "attendance"


class SyncMetadata(CamelModel):
    paired: bool = False
    pair_code: Optional[str] = None
    role: SyncRole = SyncRole.STANDALONE
    school_id: Optional[str] = None
    device_id: Optional[str] = None
    last_sync: Optional[str] = None
    connection_state: ConnectionState = ConnectionState.OFFLINE
    master_source_id: Optional[str] = None


class PairingPayload(CamelModel):
    """Bootstrap snapshot carried by a pairing token"""
    version: str = Field(default="v2", alias="v")
    school_name: str
    academic_year: str = ""
    entities: List[EntityProfile]
    students: List[Student] = Field(default_factory=list)
    time_slots: List[TimeSlot] = Field(default_factory=list)
    master_id: Optional[str] = None
    remote_config: Dict[str, Any] = Field(default_factory=dict)
    primary_color: Optional[str] = None


class PairingImportRequest(CamelModel):
    token: str = Field(..., min_length=1)


class PairingTokenResponse(CamelModel):
    token: str
    school_id: str


class SyncStatusResponse(CamelModel):
    school_name: str
    sync_info: SyncMetadata
    pending_pushes: int = 0
