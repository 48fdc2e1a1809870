"""User model"""
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from timebridge.models.base import Base, utcnow
from timebridge.models.job_definition import JobDefinition, JobType


class User(Base):
    """Owner of service definitions, mappings and job definitions"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    # Lower bound of the time entry sync window (start of this day).
    registrated = Column(DateTime, nullable=False, default=utcnow)
    status = Column(String, nullable=False, default="active")  # "active" | "inactive"

    # Relationships
    service_definitions = relationship(
        "ServiceDefinition", back_populates="user", cascade="all, delete-orphan"
    )
    mappings = relationship("Mapping", back_populates="user", cascade="all, delete-orphan")
    job_definitions = relationship(
        "JobDefinition", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def primary_service_definition(self):
        return next((sd for sd in self.service_definitions if sd.is_primary), None)

    def job_definition(self, job_type: JobType) -> Optional[JobDefinition]:
        return next((jd for jd in self.job_definitions if jd.job_type == job_type), None)

    @property
    def config_sync_job_definition(self) -> Optional[JobDefinition]:
        return self.job_definition(JobType.CONFIG)

    @property
    def time_entry_sync_job_definition(self) -> Optional[JobDefinition]:
        return self.job_definition(JobType.TIME_ENTRIES)

    @property
    def config_sync_done(self) -> bool:
        """True once the config sync job succeeded at least once (mappings exist)."""
        jd = self.config_sync_job_definition
        return jd is not None and jd.last_successfully_done is not None

    def __repr__(self):
        return f"<User(username='{self.username}', status='{self.status}')>"
