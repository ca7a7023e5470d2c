"""
SQLAlchemy models for roster sync audit records and the persisted sync status.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON
from sqlalchemy.sql import func

from memberhub.core.database import Base


class SyncRunRecord(Base):
    """One finished reconciliation attempt. Rows are written once and never updated."""

    __tablename__ = "roster_sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(String(50), unique=True, index=True, nullable=False)

    # Mode and outcome
    mode = Column(String(20), nullable=False)  # 'full', 'database-only'
    is_fallback = Column(Boolean, default=False)
    success = Column(Boolean, default=True)

    # Counts
    created = Column(Integer, default=0)
    updated = Column(Integer, default=0)
    unchanged = Column(Integer, default=0)
    pushed = Column(Integer, default=0)
    cleaned = Column(Integer, default=0)
    validated = Column(Integer, default=0)

    # Error tracking
    errors = Column(JSON, nullable=True)
    circuit_breaker = Column(JSON, nullable=True)

    # Timing
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RosterSyncStatus(Base):
    """Single-row summary of the most recent sync, kept across restarts."""

    __tablename__ = "roster_sync_status"

    id = Column(Integer, primary_key=True)
    last_sync = Column(DateTime(timezone=True), nullable=True)
    last_sync_success = Column(Boolean, nullable=True)
    sync_count = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
