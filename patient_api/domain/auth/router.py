"""Auth router - sign up, sign in, profile and NPI verification"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...rate_limiter import rate_limit_auth
from .schemas import (
    NPIVerificationResponse,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    SignUpResponse,
    UserResponse,
)
from .service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    """Dependency injection for AuthService"""
    return AuthService(db)


@router.post("/signup", response_model=SignUpResponse, status_code=201)
async def signup(
    data: SignUpRequest,
    _: None = Depends(rate_limit_auth),
    service: AuthService = Depends(get_auth_service),
):
    """Register a patient, doctor, brand or admin account"""
    user = service.signup(data)
    return SignUpResponse(
        message="User registered successfully.",
        user=UserResponse(**user.to_safe_dict()),
    )


@router.post("/signin", response_model=SignInResponse)
async def signin(
    data: SignInRequest,
    _: None = Depends(rate_limit_auth),
    service: AuthService = Depends(get_auth_service),
):
    token, user = service.signin(data)
    return SignInResponse(token=token, user=UserResponse(**user.to_safe_dict()))


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    return {"success": True, "user": current_user.to_safe_dict()}


@router.get("/npi/{npi_number}", response_model=NPIVerificationResponse)
async def verify_npi(
    npi_number: str,
    service: AuthService = Depends(get_auth_service),
):
    """Check an NPI number against the NPPES registry"""
    result = await service.verify_npi(npi_number)
    return NPIVerificationResponse(valid=result["valid"], data=result["data"])
