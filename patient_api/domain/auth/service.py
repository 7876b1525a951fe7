"""Auth service - Business logic for sign up, sign in and NPI checks"""

import logging

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import Clinic, User
from ...security_utils import create_user_token, hash_password, verify_password
from .npi_client import NPIRegistryError, is_valid_npi_format, lookup_npi
from .repository import AuthRepository
from .schemas import SignInRequest, SignUpRequest

logger = logging.getLogger(__name__)

# Frontend role names mapped onto stored roles
ROLE_MAP = {
    "patient": "patient",
    "provider": "doctor",
    "doctor": "doctor",
    "brand": "brand",
    "admin": "admin",
}


class AuthService:
    """Service layer for account business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AuthRepository()

    def _unique_slug(self, clinic_name: str) -> str:
        base_slug = Clinic.slugify(clinic_name) or "clinic"
        if not self.repo.slug_exists(self.db, base_slug):
            return base_slug
        counter = 1
        while self.repo.slug_exists(self.db, f"{base_slug}-{counter}"):
            counter += 1
        return f"{base_slug}-{counter}"

    def _validate_doctor_fields(self, data: SignUpRequest) -> None:
        if not data.npiNumber or not data.npiNumber.strip():
            raise HTTPException(status_code=400, detail="NPI number is required for doctor accounts")
        if not data.doctorLicenseStatesCoverage:
            raise HTTPException(
                status_code=400,
                detail="At least one licensed state is required for doctor accounts",
            )
        if not is_valid_npi_format(data.npiNumber):
            raise HTTPException(status_code=400, detail="NPI number must be exactly 10 digits")

    def signup(self, data: SignUpRequest) -> User:
        role = ROLE_MAP[data.role]

        if role == "doctor":
            self._validate_doctor_fields(data)

        if data.role in ("provider", "brand") and not (data.clinicName or "").strip():
            raise HTTPException(
                status_code=400, detail="Clinic name is required for providers and brand users"
            )

        if self.repo.get_user_by_email(self.db, data.email):
            raise HTTPException(status_code=409, detail="User with this email already exists")

        clinic_id = data.clinicId
        if clinic_id and not self.repo.get_clinic(self.db, clinic_id):
            raise HTTPException(status_code=404, detail="Clinic not found")

        if data.role in ("provider", "brand") and data.clinicName and not clinic_id:
            clinic = self.repo.create_clinic(
                self.db,
                name=data.clinicName.strip(),
                slug=self._unique_slug(data.clinicName.strip()),
                business_type=data.businessType,
            )
            clinic_id = clinic.id
            logger.info(f"🏥 Clinic created: {clinic.id}")

        try:
            user = self.repo.create_user(
                self.db,
                roles={role: True},
                first_name=data.firstName,
                last_name=data.lastName,
                email=data.email,
                password_hash=hash_password(data.password),
                role=role,
                dob=data.dateOfBirth,
                gender=data.gender,
                phone_number=data.phoneNumber,
                clinic_id=clinic_id,
                npi_number=data.npiNumber.strip() if data.npiNumber else None,
                doctor_license_states=data.doctorLicenseStatesCoverage if role == "doctor" else None,
                activated=True,
            )
        except IntegrityError as e:
            self.db.rollback()
            raise HTTPException(status_code=409, detail="User with this email already exists") from e

        logger.info(f"✅ User registered: {user.id} (role={role})")
        return user

    def signin(self, data: SignInRequest) -> tuple[str, User]:
        user = self.repo.get_user_by_email(self.db, data.email)
        if not user or not verify_password(data.password, user.password_hash):
            logger.warning("🚫 Sign in failed: invalid credentials")
            raise HTTPException(status_code=401, detail="Invalid email or password")

        if not user.activated:
            raise HTTPException(
                status_code=401,
                detail="Please activate your account before signing in.",
            )

        self.repo.touch_last_login(self.db, user)
        logger.info(f"🔓 User signed in: {user.id}")
        return create_user_token(user), user

    async def verify_npi(self, npi: str) -> dict:
        if not is_valid_npi_format(npi):
            raise HTTPException(status_code=400, detail="NPI number must be exactly 10 digits")
        try:
            record = await lookup_npi(npi.strip())
        except NPIRegistryError as e:
            raise HTTPException(status_code=502, detail="NPI registry unavailable") from e
        return {"valid": record is not None, "data": record}
