"""Time entry correspondence models"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from timebridge.models.base import Base, utcnow


class TimeEntrySyncedObject(Base):
    """One logical time entry linked to its copies in every service"""

    __tablename__ = "time_entry_synced_objects"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    last_updated = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    service_time_entry_objects = relationship(
        "ServiceTimeEntryObject",
        back_populates="time_entry_synced_object",
        cascade="all, delete-orphan",
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("last_updated", utcnow())
        super().__init__(**kwargs)

    @property
    def origin(self):
        return next((steo for steo in self.service_time_entry_objects if steo.is_origin), None)

    def __repr__(self):
        return f"<TimeEntrySyncedObject(id={self.id}, last_updated={self.last_updated})>"


class ServiceTimeEntryObject(Base):
    """A time entry copy inside one service"""

    __tablename__ = "service_time_entry_objects"
    __table_args__ = (
        UniqueConstraint(
            "time_entry_synced_object_id", "service", name="uq_service_time_entry_objects_teso_service"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    time_entry_synced_object_id = Column(
        Integer, ForeignKey("time_entry_synced_objects.id"), nullable=False
    )

    # Id of the real time entry in the service
    entry_id = Column(String, nullable=False)
    service = Column(String, nullable=False)
    is_origin = Column(Boolean, default=False, nullable=False)

    # Relationships
    time_entry_synced_object = relationship(
        "TimeEntrySyncedObject", back_populates="service_time_entry_objects"
    )

    def __repr__(self):
        return f"<ServiceTimeEntryObject(service='{self.service}', entry_id='{self.entry_id}', is_origin={self.is_origin})>"
