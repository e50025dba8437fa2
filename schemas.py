"""
Database Schemas for CivicGuard

Each stored Pydantic model maps to a MongoDB collection
(User -> "users", Report -> "reports", Badge -> "badges",
user_badges links badges to users). Draft and Photo never reach the store;
they live inside a wizard session until submission.
"""

from datetime import datetime
from typing import Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

HazardType = Literal['Pothole', 'Broken Sidewalk', 'Street Light Out', 'Flooding', 'Debris', 'Traffic Sign Damage', 'Other']
Category = Literal['Roads', 'Water', 'Sanitation', 'Lighting', 'Safety']
Severity = Literal['Low', 'Medium', 'High', 'Critical']
Status = Literal['sent', 'acknowledged', 'in_progress', 'resolved', 'escalated', 'verified']
Language = Literal['en', 'hi']

HAZARD_TYPES = get_args(HazardType)
CATEGORIES = get_args(Category)
SEVERITIES = get_args(Severity)
STATUSES = get_args(Status)

RESOLVED_STATUSES = ('resolved', 'verified')
PENDING_STATUSES = ('sent', 'acknowledged')


class User(BaseModel):
    id: str = Field(..., description="UUID, shared with the credentials")
    email: EmailStr = Field(..., description="Email address")
    name: Optional[str] = Field(None, description="Display name")
    avatar_url: Optional[str] = Field(None, description="Public avatar URL")
    city: Optional[str] = Field(None)
    ward: Optional[str] = Field(None)
    reputation_points: int = Field(0, description="Points granted outside this service")
    preferred_language: Language = Field('en')
    created_at: Optional[datetime] = None


class Report(BaseModel):
    id: Optional[str] = None
    ticket_id: str = Field(..., description="Human-facing ticket, e.g. CG-LZ3K9A1B-7QX2")
    user_id: str = Field(..., description="Reporter id")
    hazard_type: HazardType
    category: Category
    severity: Severity
    urgency_score: int = Field(..., ge=1, le=10)
    description: str = Field('', description="Free text from the reporter")
    location_lat: Optional[float] = None
    location_lon: Optional[float] = None
    location_address: Optional[str] = Field(None, description="Address or landmark")
    photo_url: str = Field(..., description="Public URL of the hazard photo")
    photo_after_url: Optional[str] = None
    status: Status = Field('sent')
    assigned_official: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class Badge(BaseModel):
    id: str
    name: str
    description: str
    icon_url: Optional[str] = None
    points_required: int


class Photo(BaseModel):
    data: bytes = Field(..., repr=False)
    filename: str = Field('photo.jpg')
    content_type: Optional[str] = Field(None)

    @property
    def extension(self) -> str:
        return self.filename.rsplit('.', 1)[-1]


class Draft(BaseModel):
    """An in-progress hazard report held by one wizard session."""

    model_config = ConfigDict(validate_assignment=True)

    photo: Optional[Photo] = None
    location: str = Field('', description="Address or location description")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    hazard_type: Optional[HazardType] = None
    category: Category = 'Roads'
    severity: Severity = 'Medium'
    description: str = ''


class DraftUpdate(BaseModel):
    """Partial update of the non-photo draft fields; unset fields are left alone."""

    location: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    hazard_type: Optional[HazardType] = None
    category: Optional[Category] = None
    severity: Optional[Severity] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _reject_nulls(self):
        # Only the coordinates and hazard type can be cleared
        for name in ("location", "category", "severity", "description"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    ward: Optional[str] = None
    preferred_language: Optional[Language] = None
