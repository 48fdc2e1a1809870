"""User management endpoints"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from timebridge.config import settings
from timebridge.models import (
    JobDefinition,
    JobLog,
    JobType,
    Mapping,
    ServiceDefinition,
    TimeEntrySyncedObject,
    User,
)
from timebridge.models.base import get_db
from timebridge.scheduler import scheduler
from timebridge.synced_services import SYNCED_SERVICES

router = APIRouter(prefix="/api/users", tags=["users"])


class ServiceDefinitionCreate(BaseModel):
    name: str
    api_key: str
    is_primary: bool = False
    config: Dict[str, Any] = {}


class ServiceDefinitionResponse(BaseModel):
    id: int
    name: str
    is_primary: bool
    config: Dict[str, Any]

    class Config:
        from_attributes = True


class JobDefinitionResponse(BaseModel):
    job_type: JobType
    schedule: str
    last_successfully_done: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    username: str
    service_definitions: List[ServiceDefinitionCreate]
    # Crontab expressions; defaults from settings when omitted
    config_sync_schedule: Optional[str] = None
    time_entry_sync_schedule: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    username: str
    registrated: datetime
    status: str
    service_definitions: List[ServiceDefinitionResponse]
    job_definitions: List[JobDefinitionResponse]

    class Config:
        from_attributes = True


class MappingsObjectResponse(BaseModel):
    service: str
    object_id: str
    name: str
    type: str
    last_updated: datetime

    class Config:
        from_attributes = True


class MappingResponse(BaseModel):
    id: int
    primary_object_id: str
    primary_object_type: Optional[str] = None
    name: str
    mappings_objects: List[MappingsObjectResponse]

    class Config:
        from_attributes = True


class ServiceTimeEntryObjectResponse(BaseModel):
    service: str
    entry_id: str
    is_origin: bool

    class Config:
        from_attributes = True


class TimeEntrySyncedObjectResponse(BaseModel):
    id: int
    last_updated: datetime
    service_time_entry_objects: List[ServiceTimeEntryObjectResponse]

    class Config:
        from_attributes = True


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/", response_model=List[UserResponse])
def list_users(db: Session = Depends(get_db)):
    """List all users"""
    return db.query(User).all()


@router.post("/", response_model=UserResponse)
def create_user(user: UserCreate, db: Session = Depends(get_db)):
    """Create a user with its service definitions and schedule its jobs"""
    existing = db.query(User).filter(User.username == user.username).first()
    if existing:
        raise HTTPException(status_code=400, detail="Username already exists")

    if sum(1 for sd in user.service_definitions if sd.is_primary) != 1:
        raise HTTPException(status_code=400, detail="Exactly one primary service definition is required")
    names = [sd.name for sd in user.service_definitions]
    if len(set(names)) != len(names):
        raise HTTPException(status_code=400, detail="Service definition names must be unique")
    unknown = [name for name in names if name not in SYNCED_SERVICES]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown services: {', '.join(unknown)}")

    db_user = User(
        username=user.username,
        service_definitions=[ServiceDefinition(**sd.model_dump()) for sd in user.service_definitions],
        job_definitions=[
            JobDefinition(
                job_type=JobType.CONFIG,
                schedule=user.config_sync_schedule or settings.default_config_sync_schedule,
            ),
            JobDefinition(
                job_type=JobType.TIME_ENTRIES,
                schedule=user.time_entry_sync_schedule or settings.default_time_entry_sync_schedule,
            ),
        ],
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    scheduler.schedule_user(db_user)
    return db_user


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db)):
    """Get a specific user"""
    return _get_user_or_404(db, user_id)


@router.delete("/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db)):
    """Delete a user with everything it owns"""
    user = _get_user_or_404(db, user_id)

    scheduler.unschedule_user(user_id)
    for teso in db.query(TimeEntrySyncedObject).filter(TimeEntrySyncedObject.user_id == user_id).all():
        db.delete(teso)
    db.query(JobLog).filter(JobLog.user_id == user_id).delete()
    db.delete(user)
    db.commit()
    return {"message": "User deleted successfully"}


@router.get("/{user_id}/mappings", response_model=List[MappingResponse])
def list_mappings(user_id: int, db: Session = Depends(get_db)):
    """Mappings of a user, as maintained by the config sync job"""
    _get_user_or_404(db, user_id)
    return db.query(Mapping).filter(Mapping.user_id == user_id).all()


@router.get("/{user_id}/time-entry-synced-objects", response_model=List[TimeEntrySyncedObjectResponse])
def list_time_entry_synced_objects(user_id: int, db: Session = Depends(get_db)):
    """Time entry synced objects of a user, newest first"""
    _get_user_or_404(db, user_id)
    return (
        db.query(TimeEntrySyncedObject)
        .filter(TimeEntrySyncedObject.user_id == user_id)
        .order_by(TimeEntrySyncedObject.last_updated.desc())
        .all()
    )
