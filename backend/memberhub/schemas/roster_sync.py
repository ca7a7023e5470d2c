"""
Pydantic schemas for roster sync API endpoints.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime


class SyncRunRequest(BaseModel):
    """Options for a manually triggered sync run."""
    push_pending_to_external: Optional[bool] = None
    timeout_seconds: Optional[float] = Field(None, gt=0, le=3600)


class SyncRunResponse(BaseModel):
    """Summary of a finished sync run."""
    id: str
    started_at: datetime
    finished_at: datetime
    mode: str
    is_fallback: bool
    success: bool
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    pushed: int = 0
    cleaned: int = 0
    validated: int = 0
    errors: List[str] = Field(default_factory=list)
    circuit_breaker: Dict[str, Any] = Field(default_factory=dict)


class SyncRunRecordResponse(BaseModel):
    """Persisted sync run history entry."""
    run_id: str
    mode: str
    is_fallback: bool
    success: bool
    created: int
    updated: int
    unchanged: int
    pushed: int
    cleaned: int
    validated: int
    errors: Optional[List[str]] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SyncStats(BaseModel):
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    database_only_syncs: int
    last_error: Optional[str] = None


class SyncStatusResponse(BaseModel):
    """Current sync engine status."""
    is_running: bool
    last_sync_time: Optional[datetime] = None
    stats: SyncStats
    last_run: Optional[SyncRunResponse] = None
    circuit_breaker: Dict[str, Any]
    health: Dict[str, Optional[bool]]
    recent_errors: List[Dict[str, Any]] = Field(default_factory=list)


class MemberValidationRequest(BaseModel):
    """Roster lookup by natural key."""
    national_id: Optional[str] = Field(None, max_length=20)
    registration_number: Optional[str] = Field(None, max_length=50)


class MemberValidationResponse(BaseModel):
    is_valid: bool
    message: str
    data: Optional[Dict[str, Any]] = None


class ConnectionTestResponse(BaseModel):
    """Result of probing the database and the roster."""
    database: bool
    roster: bool
    mock_mode: bool = False
    error: Optional[str] = None
