"""Structural mapping models"""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from timebridge.models.base import Base, utcnow


class Mapping(Base):
    """Links one primary structural object to its representations in every service"""

    __tablename__ = "mappings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    primary_object_id = Column(String, nullable=False)
    # Missing on legacy records; the primary MappingsObject's type is used instead.
    primary_object_type = Column(String, nullable=True)
    name = Column(String, nullable=False)

    # Relationships
    user = relationship("User", back_populates="mappings")
    mappings_objects = relationship(
        "MappingsObject", back_populates="mapping", cascade="all, delete-orphan"
    )

    def mappings_object_for(self, service: str):
        """MappingsObject of the given service, if any (at most one per service)."""
        return next((mo for mo in self.mappings_objects if mo.service == service), None)

    def __repr__(self):
        return f"<Mapping(primary_object_id='{self.primary_object_id}', name='{self.name}')>"


class MappingsObject(Base):
    """Representation of a mapped structural object inside one service"""

    __tablename__ = "mappings_objects"
    __table_args__ = (
        UniqueConstraint("mapping_id", "service", name="uq_mappings_objects_mapping_service"),
    )

    id = Column(Integer, primary_key=True, index=True)
    mapping_id = Column(Integer, ForeignKey("mappings.id"), nullable=False)

    # Id of the real object in the service
    object_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    service = Column(String, nullable=False)
    type = Column(String, nullable=False)
    last_updated = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    mapping = relationship("Mapping", back_populates="mappings_objects")

    def __init__(self, **kwargs):
        kwargs.setdefault("last_updated", utcnow())
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<MappingsObject(service='{self.service}', object_id='{self.object_id}', type='{self.type}')>"
