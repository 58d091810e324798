"""
Recalculation Module - API Routes
===================================
Preview, dispatch and manage recalculation jobs.

Endpoints:
  POST /api/recalculation/preview           - Affected count + sample before/after (no writes)
  POST /api/recalculation/execute           - Run inline (small) or queue a job (large)
  GET  /api/recalculation/jobs              - Recent jobs (optional ?status=)
  GET  /api/recalculation/jobs/{id}         - Job detail and progress
  POST /api/recalculation/jobs/{id}/retry   - Retry a FAILED/PARTIAL job
  POST /api/recalculation/jobs/{id}/cancel  - Cancel a PENDING/RUNNING job
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from config.database import get_db
from common.deps import get_actor
from modules.recalculation.service import RecalculationTarget, recalculation_service


router = APIRouter(prefix="/api/recalculation", tags=["recalculation-api"])


# ==========================================
# Schemas
# ==========================================

class TargetRequest(BaseModel):
    config_id: Optional[int] = Field(None, gt=0)
    metal_type: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self):
        if (self.config_id is None) == (self.metal_type is None):
            raise ValueError("Provide exactly one of config_id or metal_type")
        return self

    def target(self) -> RecalculationTarget:
        if self.config_id is not None:
            return RecalculationTarget.for_config(self.config_id)
        return RecalculationTarget.for_metal_type(self.metal_type)


class PreviewRequest(TargetRequest):
    metal_rate: Optional[Decimal] = Field(None, ge=0)


# ==========================================
# Routes
# ==========================================

@router.post("/preview")
def preview(body: PreviewRequest, db: Session = Depends(get_db)):
    result = recalculation_service.preview_recalculation(db, body.target(), metal_rate=body.metal_rate)
    return {"success": True, **result}


@router.post("/execute")
def execute(body: TargetRequest, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    result = recalculation_service.execute_recalculation(db, body.target(), triggered_by=actor)
    return {"success": True, **result}


@router.get("/jobs")
def list_jobs(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    jobs = recalculation_service.list_jobs(db, status=status, limit=limit)
    return {"success": True, "jobs": [job.to_dict() for job in jobs]}


@router.get("/jobs/{job_id}")
def get_job(job_id: int, db: Session = Depends(get_db)):
    return {"success": True, "job": recalculation_service.get_job(db, job_id).to_dict()}


@router.post("/jobs/{job_id}/retry")
def retry_job(job_id: int, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    result = recalculation_service.retry_job(db, job_id, actor)
    return {"success": True, **result}


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: int, db: Session = Depends(get_db), actor: str = Depends(get_actor)):
    job = recalculation_service.cancel_job(db, job_id, actor)
    return {"success": True, "job": job.to_dict()}
