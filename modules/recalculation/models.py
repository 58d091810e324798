"""
Recalculation Module - Models
===============================
RecalculationJob: a tracked batch that rewrites product breakdowns after a
metal price or configuration change. Survives restarts and can be retried.

Status flow:
    PENDING -> RUNNING -> COMPLETED | PARTIAL | FAILED
    RUNNING -> PENDING (hard failure, attempts left)
"""

import enum

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, Index, text
from sqlalchemy.sql import func

from config import settings
from config.database import Base


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"      # some products succeeded, some failed
    FAILED = "FAILED"


class JobMode(str, enum.Enum):
    SYNC = "sync"
    BACKGROUND = "background"


class ScopeType(str, enum.Enum):
    CONFIG = "config"
    METAL_TYPE = "metal_type"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)
RETRYABLE_STATUSES = (JobStatus.FAILED.value, JobStatus.PARTIAL.value)


class RecalculationJob(Base):
    __tablename__ = "recalculation_jobs"
    __table_args__ = (
        # at most one PENDING/RUNNING job per scope
        Index(
            "uq_recalculation_active_scope", "scope_key", unique=True,
            postgresql_where=text("status IN ('PENDING', 'RUNNING')"),
            sqlite_where=text("status IN ('PENDING', 'RUNNING')"),
        ),
    )

    id = Column(Integer, primary_key=True)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING, index=True)
    mode = Column(String(20), nullable=False, default=JobMode.BACKGROUND)

    # Scope
    scope_type = Column(String(20), nullable=False)
    scope_value = Column(String(60), nullable=False)
    scope_key = Column(String(100), nullable=False, index=True)   # "config:7", "metal_type:GOLD_22K"

    # Progress
    total = Column(Integer, nullable=False, default=0)
    processed = Column(Integer, nullable=False, default=0)
    succeeded = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    failures = Column(JSON, nullable=False, default=list)
    checkpoint_product_id = Column(Integer, nullable=True)
    result = Column(JSON, nullable=True)

    # Retry tracking
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=settings.JOB_MAX_ATTEMPTS)
    last_error = Column(Text, nullable=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)

    triggered_by = Column(String, nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # ------------------------------------------
    # Transitions
    # ------------------------------------------

    def add_failure(self, entity_id, error):
        """Count the failure; keep its detail only while under the cap."""
        from common.helpers import truncate
        self.failed = (self.failed or 0) + 1
        current = list(self.failures or [])
        if len(current) < settings.JOB_FAILURE_CAP:
            current.append({
                "entity_id": entity_id,
                "error": truncate(error, settings.JOB_ERROR_MAX_LENGTH),
            })
            self.failures = current   # reassign so the JSON change is tracked

    def mark_finished(self, result: dict = None):
        from common.helpers import now_utc
        self.status = JobStatus.PARTIAL.value if self.failed else JobStatus.COMPLETED.value
        self.completed_at = now_utc()
        self.result = result

    def mark_failed(self, error):
        """Hard failure: back to PENDING while attempts remain, else FAILED."""
        from common.helpers import now_utc, truncate
        self.last_error = truncate(error, settings.JOB_ERROR_MAX_LENGTH)
        if (self.attempts or 0) >= (self.max_attempts or settings.JOB_MAX_ATTEMPTS):
            self.status = JobStatus.FAILED.value
            self.completed_at = now_utc()
        else:
            self.status = JobStatus.PENDING.value

    def reset_progress(self):
        self.total = 0
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.skipped = 0
        self.failures = []
        self.checkpoint_product_id = None
        self.result = None
        self.completed_at = None
        self.cancel_requested = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "mode": self.mode,
            "scope": {"type": self.scope_type, "value": self.scope_value},
            "progress": {
                "total": self.total,
                "processed": self.processed,
                "succeeded": self.succeeded,
                "failed": self.failed,
                "skipped": self.skipped,
            },
            "failures": self.failures or [],
            "result": self.result,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "cancel_requested": self.cancel_requested,
            "triggered_by": self.triggered_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<RecalculationJob {self.id} {self.scope_key} {self.status}>"
