"""
Database Schemas for the Do charity app

Each model describes the documents of one MongoDB collection:
- Program -> "programs"
- Donation -> "donations"
- Volunteer -> "volunteers"
- User -> "users"

Create models carry the fields a client may submit; *Update models make every
field optional for PATCH requests but reject explicit nulls. Derived fields
(Program.raised, Program.volunteers) and server timestamps are never accepted
from clients.
"""

import datetime as dt
from typing import ClassVar, List, Literal, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator, model_validator

UserRole = Literal["admin", "donor", "volunteer"]
ProgramStatus = Literal["active", "draft", "completed"]
DonationStatus = Literal["completed", "pending", "failed"]
VolunteerStatus = Literal["active", "inactive"]


class PatchModel(BaseModel):
    """PATCH body: any field may be omitted, but only `nullable_fields` may be sent as null."""

    nullable_fields: ClassVar[Tuple[str, ...]] = ()

    @field_validator("*", mode="before")
    @classmethod
    def reject_null(cls, value, info: ValidationInfo):
        if value is None and info.field_name not in cls.nullable_fields:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


# Programs
class ProgramCreate(BaseModel):
    title: str = Field(..., min_length=1, description="Program title")
    description: str = Field(..., min_length=1)
    short_description: str = Field("", description="Teaser shown on cards")
    category: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    manager: str = Field(..., min_length=1, description="Program manager name")
    start_date: dt.date
    end_date: dt.date
    target: float = Field(..., gt=0, description="Funding goal in Rs.")
    status: ProgramStatus = "draft"
    is_featured: bool = False
    image_url: str = ""
    tags: List[str] = []

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProgramUpdate(PatchModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    short_description: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    manager: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    target: Optional[float] = Field(None, gt=0)
    status: Optional[ProgramStatus] = None
    is_featured: Optional[bool] = None
    image_url: Optional[str] = None
    tags: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


# Donations
class DonationCreate(BaseModel):
    program_id: str = Field(..., description="Linked program id")
    amount: float = Field(..., gt=0, description="Amount in Rs.")
    date: dt.date
    status: DonationStatus = "completed"
    payment_method: str = Field(..., min_length=1, description="Credit Card/PayPal/Bank Transfer")
    is_anonymous: bool = False
    note: str = ""
    # Admin-entered donations may name another donor
    donor_id: Optional[str] = None
    donor_name: Optional[str] = None
    donor_avatar: Optional[str] = None


class DonationUpdate(PatchModel):
    amount: Optional[float] = Field(None, gt=0)
    date: Optional[dt.date] = None
    status: Optional[DonationStatus] = None
    payment_method: Optional[str] = None
    is_anonymous: Optional[bool] = None
    note: Optional[str] = None
    donor_name: Optional[str] = None


# Volunteers
class VolunteerCreate(BaseModel):
    program_id: str
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    role: str = Field(..., min_length=1, description="Role within the program")
    joined_date: dt.date
    status: VolunteerStatus = "active"
    hours: float = Field(0, ge=0, description="Hours contributed")


class VolunteerUpdate(PatchModel):
    nullable_fields: ClassVar[Tuple[str, ...]] = ("phone",)

    program_id: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    joined_date: Optional[dt.date] = None
    status: Optional[VolunteerStatus] = None
    hours: Optional[float] = Field(None, ge=0)


# Users
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=6, description="Plain password, stored hashed")
    role: UserRole = "donor"


class UserUpdate(PatchModel):
    name: Optional[str] = Field(None, min_length=1)
    avatar: Optional[str] = None
    preferred_communication: Optional[str] = None


class RoleUpdate(BaseModel):
    role: UserRole
    is_active: Optional[bool] = None


class OnboardingPayload(BaseModel):
    interests: List[str] = Field(..., min_length=1, description="At least one interest")
    preferred_communication: Literal["email", "sms", "phone", "none"] = "email"
    how_heard: str = ""
    donation_frequency: str = "occasional"


# Auth requests; email is validated in the handlers to return the
# {"success": false, "message": ...} body the registration flow expects
class EmailPayload(BaseModel):
    email: Optional[str] = None


class VerifyOtpPayload(BaseModel):
    email: Optional[str] = None
    otp: Optional[str] = None


class RegisterPayload(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    # Admins are created by other admins through POST /users
    role: Optional[Literal["donor", "volunteer"]] = None


class ResetCodePayload(BaseModel):
    email: str
    code: str


class ResetPasswordPayload(BaseModel):
    email: str
    code: str
    new_password: str = Field(..., min_length=6)
