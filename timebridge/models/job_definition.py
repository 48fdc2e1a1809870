"""Job definition model"""
import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from timebridge.models.base import Base


class JobType(str, enum.Enum):
    """Sync job kind"""
    CONFIG = "config"
    TIME_ENTRIES = "time-entries"


class JobDefinition(Base):
    """Per-user schedule and last success of one job kind"""

    __tablename__ = "job_definitions"
    __table_args__ = (
        UniqueConstraint("user_id", "job_type", name="uq_job_definitions_user_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    job_type = Column(Enum(JobType), nullable=False)

    # Cron schedule (standard 5-field crontab)
    schedule = Column(String, nullable=False)
    last_successfully_done = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="job_definitions")

    def __repr__(self):
        return f"<JobDefinition(type={self.job_type}, schedule='{self.schedule}')>"
