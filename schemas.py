"""
Database Schemas for CivicLens

Each document model represents a MongoDB collection.
Collection name = lowercase of class name (User -> "user", Report -> "report").
The remaining models describe request bodies and API responses.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: Optional[ObjectId] = Field(None, alias="_id")
    createdAt: datetime = Field(default_factory=utcnow)

    @classmethod
    def collection_name(cls) -> str:
        return cls.__name__.lower()

    @classmethod
    def from_document(cls, document: dict):
        return cls.model_validate(document)

    def to_document(self) -> dict:
        data = self.model_dump(exclude={"id"})
        if self.id is not None:
            data["_id"] = self.id
        return data


class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, unique per user")
    password: str = Field(..., description="bcrypt hash of the password")


class Report(Document):
    user: ObjectId = Field(..., description="Id of the reporting user")
    title: str = Field(..., min_length=1, description="Short summary of the issue")
    description: Optional[str] = Field(None)
    latitude: Optional[float] = Field(None)
    longitude: Optional[float] = Field(None)
    address: Optional[str] = Field(None, description="Nearest address or landmark")
    photoUrl: Optional[str] = Field(None, description="Absolute URL of the uploaded photo")


# ---------- Requests ----------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


def parse_coordinate(value: Any) -> Optional[float]:
    """Parse a form value into a finite float, or None when it isn't one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class ReportForm(BaseModel):
    """Text fields of a multipart report submission."""

    title: Optional[str] = None
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def coerce_coordinate(cls, v: Any) -> Optional[float]:
        return parse_coordinate(v)


# ---------- Responses ----------

class UserOut(BaseModel):
    id: str
    name: str
    email: str
    createdAt: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(id=str(user.id), name=user.name, email=user.email, createdAt=user.createdAt)


class ReportOwner(BaseModel):
    id: str
    name: str
    email: str


class ReportOut(BaseModel):
    id: str
    user: Optional[ReportOwner] = None
    title: str
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    photoUrl: Optional[str] = None
    createdAt: datetime

    @classmethod
    def from_report(cls, report: Report, owner: Optional[User]) -> "ReportOut":
        return cls(
            id=str(report.id),
            user=ReportOwner(id=str(owner.id), name=owner.name, email=owner.email) if owner else None,
            title=report.title,
            description=report.description,
            latitude=report.latitude,
            longitude=report.longitude,
            address=report.address,
            photoUrl=report.photoUrl,
            createdAt=report.createdAt,
        )


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class MeResponse(BaseModel):
    user: UserOut


class CreateReportResponse(BaseModel):
    success: bool = True
    report: ReportOut


class HealthResponse(BaseModel):
    status: str
    database: str
