"""Program router - clinic program management and public program pages"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import ProgramCreate, ProgramResponse, ProgramUpdate
from .service import ProgramService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/programs", tags=["Programs"])
public_router = APIRouter(prefix="/public/programs", tags=["Programs"])


def get_program_service(db: Session = Depends(get_db)) -> ProgramService:
    """Dependency injection for ProgramService"""
    return ProgramService(db)


# ============================================================================
# CLINIC CRUD
# ============================================================================


@router.get("")
async def get_programs(
    medicalTemplateId: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    service: ProgramService = Depends(get_program_service),
):
    """Programs of the caller's clinic, optionally for one medical template"""
    programs = service.get_programs(current_user, medicalTemplateId)
    return {"success": True, "data": [ProgramResponse.from_model(p) for p in programs]}


@router.get("/{program_id}")
async def get_program(
    program_id: str,
    current_user: User = Depends(get_current_user),
    service: ProgramService = Depends(get_program_service),
):
    program = service.get_program(program_id, current_user)
    return {"success": True, "data": ProgramResponse.from_model(program)}


@router.post("", status_code=201)
async def create_program(
    data: ProgramCreate,
    current_user: User = Depends(get_current_user),
    service: ProgramService = Depends(get_program_service),
):
    program = service.create_program(data, current_user)
    return {
        "success": True,
        "message": "Program created successfully",
        "data": ProgramResponse.from_model(program),
    }


@router.put("/{program_id}")
async def update_program(
    program_id: str,
    data: ProgramUpdate,
    current_user: User = Depends(get_current_user),
    service: ProgramService = Depends(get_program_service),
):
    program = service.update_program(program_id, data, current_user)
    return {
        "success": True,
        "message": "Program updated successfully",
        "data": ProgramResponse.from_model(program),
    }


@router.delete("/{program_id}")
async def delete_program(
    program_id: str,
    current_user: User = Depends(get_current_user),
    service: ProgramService = Depends(get_program_service),
):
    return service.delete_program(program_id, current_user)


# ============================================================================
# PUBLIC
# ============================================================================


@public_router.get("/by-clinic/{clinic_slug}")
async def get_public_programs_by_clinic(
    clinic_slug: str,
    affiliateSlug: Optional[str] = Query(None),
    service: ProgramService = Depends(get_program_service),
):
    """Active programs for a clinic storefront; affiliates show their parent's programs"""
    return service.get_public_programs_by_clinic(clinic_slug, affiliateSlug)


@public_router.get("/{program_id}")
async def get_public_program(
    program_id: str,
    service: ProgramService = Depends(get_program_service),
):
    return service.get_public_program(program_id)
