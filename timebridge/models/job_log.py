"""Job log model"""
import enum
import json
from typing import List, Optional

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from timebridge.models.base import Base, utcnow
from timebridge.models.job_definition import JobType


class JobStatus(str, enum.Enum):
    """Job status enumeration"""
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    UNSUCCESSFUL = "unsuccessful"


class JobOrigin(str, enum.Enum):
    """What put the job into the queue"""
    AUTO = "auto"
    MANUAL = "manual"
    RETRY = "retry"


class JobLog(Base):
    """Lifecycle record of one sync job run: scheduled -> running -> (un)successful"""

    __tablename__ = "job_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    job_type = Column(Enum(JobType), nullable=False)
    origin = Column(Enum(JobOrigin), nullable=False, default=JobOrigin.AUTO)
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.SCHEDULED)

    # Timestamps
    scheduled_date = Column(DateTime, nullable=False, default=utcnow, index=True)
    started = Column(DateTime, nullable=True)
    completed = Column(DateTime, nullable=True)

    # JSON list of failure messages collected during the run
    errors = Column(Text, nullable=True)

    # Relationships
    user = relationship("User")

    def __init__(self, **kwargs):
        kwargs.setdefault("status", JobStatus.SCHEDULED)
        kwargs.setdefault("origin", JobOrigin.AUTO)
        kwargs.setdefault("scheduled_date", utcnow())
        super().__init__(**kwargs)

    def set_to_running(self) -> bool:
        """Move to RUNNING; refused (False) unless currently SCHEDULED."""
        if self.status != JobStatus.SCHEDULED:
            return False
        self.status = JobStatus.RUNNING
        self.started = utcnow()
        return True

    def set_to_completed(self, successful: bool = True, errors: Optional[List[str]] = None) -> bool:
        """Move to SUCCESSFUL/UNSUCCESSFUL; refused (False) unless currently RUNNING."""
        if self.status != JobStatus.RUNNING:
            return False
        self.status = JobStatus.SUCCESSFUL if successful else JobStatus.UNSUCCESSFUL
        self.completed = utcnow()
        self.errors = json.dumps(errors) if errors else None
        return True

    @property
    def error_list(self) -> List[str]:
        if not self.errors:
            return []
        try:
            data = json.loads(self.errors)
        except ValueError:
            return [self.errors]
        return data if isinstance(data, list) else [str(data)]

    def __repr__(self):
        return f"<JobLog(type={self.job_type}, status={self.status})>"
