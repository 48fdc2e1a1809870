"""Job management endpoints"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from timebridge.models import JobLog, JobOrigin, User
from timebridge.models.base import get_db
from timebridge.scheduler import scheduler

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


class JobLogResponse(BaseModel):
    id: int
    user_id: int
    job_type: str
    origin: str
    status: str
    scheduled_date: datetime
    started: Optional[datetime] = None
    completed: Optional[datetime] = None
    errors: List[str] = []

    @classmethod
    def from_job_log(cls, job_log: JobLog) -> "JobLogResponse":
        return cls(
            id=job_log.id,
            user_id=job_log.user_id,
            job_type=job_log.job_type.value,
            origin=job_log.origin.value,
            status=job_log.status.value,
            scheduled_date=job_log.scheduled_date,
            started=job_log.started,
            completed=job_log.completed,
            errors=job_log.error_list,
        )


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/{user_id}/config")
def queue_config_job(user_id: int, db: Session = Depends(get_db)):
    """Manually queue a config sync job"""
    _get_user_or_404(db, user_id)
    job_log_id = scheduler.enqueue_config_job(user_id, origin=JobOrigin.MANUAL)
    if job_log_id is None:
        raise HTTPException(status_code=409, detail="Config job could not be queued")
    return {"message": "Config job queued", "job_log_id": job_log_id}


@router.post("/{user_id}/time-entries")
def queue_time_entries_job(user_id: int, db: Session = Depends(get_db)):
    """Manually queue a time entries sync job"""
    user = _get_user_or_404(db, user_id)
    if not user.config_sync_done:
        raise HTTPException(status_code=409, detail="Config job has not succeeded yet")
    job_log_id = scheduler.enqueue_time_entries_job(user_id, origin=JobOrigin.MANUAL)
    if job_log_id is None:
        raise HTTPException(status_code=409, detail="Time entries job could not be queued")
    return {"message": "Time entries job queued", "job_log_id": job_log_id}


@router.post("/{user_id}/start")
def start_jobs(user_id: int, db: Session = Depends(get_db)):
    """(Re)schedule the user's jobs and queue a config job right away"""
    user = _get_user_or_404(db, user_id)
    scheduler.schedule_user(user)
    job_log_id = scheduler.enqueue_config_job(user_id, origin=JobOrigin.MANUAL)
    return {"message": "Jobs scheduled", "job_log_id": job_log_id}


@router.post("/{user_id}/stop")
def stop_jobs(user_id: int):
    """Remove the user's scheduled jobs"""
    if not scheduler.unschedule_user(user_id):
        raise HTTPException(status_code=404, detail="No scheduled jobs for this user")
    return {"message": "Jobs stopped"}


@router.get("/{user_id}/scheduled")
def is_scheduled(user_id: int):
    """Whether the user has scheduled jobs"""
    return {"scheduled": scheduler.is_user_scheduled(user_id)}


@router.get("/logs", response_model=List[JobLogResponse])
def list_job_logs(user_id: Optional[int] = None, limit: int = 100, db: Session = Depends(get_db)):
    """Recent job logs, newest first"""
    query = db.query(JobLog)
    if user_id is not None:
        query = query.filter(JobLog.user_id == user_id)
    job_logs = query.order_by(JobLog.scheduled_date.desc(), JobLog.id.desc()).limit(limit).all()
    return [JobLogResponse.from_job_log(job_log) for job_log in job_logs]
