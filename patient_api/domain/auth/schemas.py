"""Auth domain schemas - Pydantic models for validation"""

import re
from typing import Optional

from pydantic import BaseModel, field_validator

SIGNUP_ROLES = ("patient", "provider", "doctor", "brand", "admin")


class SignUpRequest(BaseModel):
    firstName: str
    lastName: str
    email: str
    password: str
    role: str = "patient"
    dateOfBirth: Optional[str] = None
    gender: Optional[str] = None
    phoneNumber: Optional[str] = None
    clinicName: Optional[str] = None
    clinicId: Optional[str] = None
    businessType: Optional[str] = None
    npiNumber: Optional[str] = None
    doctorLicenseStatesCoverage: Optional[list[str]] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters long")
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v not in SIGNUP_ROLES:
            raise ValueError(f"Role must be one of: {', '.join(SIGNUP_ROLES)}")
        return v

    @field_validator("firstName", "lastName")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class SignInRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class UserResponse(BaseModel):
    id: str
    firstName: str
    lastName: str
    email: str
    role: str
    roles: list[str]
    clinicId: Optional[str] = None
    npiNumber: Optional[str] = None
    activated: bool


class SignUpResponse(BaseModel):
    success: bool = True
    message: str
    user: UserResponse


class SignInResponse(BaseModel):
    success: bool = True
    token: str
    user: UserResponse
    message: str = "Signed in successfully"


class NPIVerificationResponse(BaseModel):
    success: bool = True
    valid: bool
    data: Optional[dict] = None
