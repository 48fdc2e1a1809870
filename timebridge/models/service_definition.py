"""Service definition model"""
from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from timebridge.models.base import Base


class ServiceDefinition(Base):
    """Credentials and settings of one external service for a user.

    `name` selects the synced service implementation (e.g. "TogglTrack", "Redmine").
    Service dependent settings live in `config`:
    - TogglTrack: {"workspace_id": ...}
    - Redmine: {"api_point": "https://redmine.example/", "user_id": ...,
                "default_time_entry_activity_id": ...}
    """

    __tablename__ = "service_definitions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    name = Column(String, nullable=False)
    api_key = Column(String, nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    config = Column(JSON, nullable=False, default=dict)

    # Relationships
    user = relationship("User", back_populates="service_definitions")

    def __repr__(self):
        return f"<ServiceDefinition(name='{self.name}', is_primary={self.is_primary})>"
