"""Program service - Business logic for clinic programs"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...auth import require_clinic
from ...models import Program, User
from .repository import ProgramRepository
from .schemas import SERVICE_FIELDS, ProgramCreate, ProgramFields, ProgramUpdate

logger = logging.getLogger(__name__)

# Request field -> model column for plain program attributes
PROGRAM_FIELDS = {
    "name": "name",
    "description": "description",
    "medicalTemplateId": "medical_template_id",
    "parentProgramId": "parent_program_id",
    "individualProductId": "individual_product_id",
    "frontendDisplayProductId": "frontend_display_product_id",
    "isActive": "is_active",
    **SERVICE_FIELDS,
}


class ProgramService:
    """Service layer for program business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ProgramRepository()

    def get_programs(self, user: User, medical_template_id: Optional[str] = None) -> list[Program]:
        clinic_id = require_clinic(user)
        return self.repo.get_programs(self.db, clinic_id, medical_template_id)

    def get_program(self, program_id: str, user: User) -> Program:
        clinic_id = require_clinic(user)
        program = self.repo.get_program(self.db, program_id, clinic_id)
        if not program:
            raise HTTPException(status_code=404, detail="Program not found")
        return program

    def _validate_references(self, data: ProgramFields) -> None:
        if data.medicalTemplateId and not self.repo.template_exists(self.db, data.medicalTemplateId):
            raise HTTPException(status_code=404, detail="Medical template not found")
        for product_id in (data.individualProductId, data.frontendDisplayProductId):
            if product_id and not self.repo.product_exists(self.db, product_id):
                raise HTTPException(status_code=404, detail="Product not found")
        if data.parentProgramId and not self.repo.get_program_by_id(self.db, data.parentProgramId):
            raise HTTPException(status_code=404, detail="Parent program not found")

    @staticmethod
    def _to_columns(data: ProgramFields) -> dict:
        """Explicit nulls clear nullable columns and are ignored for the rest"""
        columns = {}
        for field, value in data.model_dump(exclude_unset=True).items():
            if field not in PROGRAM_FIELDS:
                continue
            column = PROGRAM_FIELDS[field]
            if value is None and not Program.__table__.c[column].nullable:
                continue
            columns[column] = value
        return columns

    def create_program(self, data: ProgramCreate, user: User) -> Program:
        clinic_id = require_clinic(user)

        if not data.name or not data.name.strip():
            raise HTTPException(status_code=400, detail="Program name is required")

        self._validate_references(data)

        columns = self._to_columns(data)
        columns["name"] = data.name.strip()
        program = self.repo.create_program(self.db, clinic_id=clinic_id, **columns)
        logger.info(f"✅ Program created: {program.id} for clinic {clinic_id}")
        return program

    def update_program(self, program_id: str, data: ProgramUpdate, user: User) -> Program:
        program = self.get_program(program_id, user)

        if data.name is not None and not data.name.strip():
            raise HTTPException(status_code=400, detail="Program name cannot be empty")

        self._validate_references(data)

        columns = self._to_columns(data)
        if data.name is not None:
            columns["name"] = data.name.strip()
        return self.repo.update_program(self.db, program, **columns)

    def delete_program(self, program_id: str, user: User) -> dict:
        """Another clinic's program is reported as missing, never as forbidden"""
        program = self.get_program(program_id, user)
        self.repo.delete_program(self.db, program)
        logger.info(f"🗑️ Program deleted: {program_id}")
        return {"success": True, "message": "Program deleted successfully"}

    # ============================================================================
    # PUBLIC (patient-facing)
    # ============================================================================

    def get_public_programs_by_clinic(self, slug: str, affiliate_slug: Optional[str] = None) -> dict:
        clinic = self.repo.get_clinic_by_slug(self.db, slug)
        if not clinic:
            raise HTTPException(status_code=404, detail="Clinic not found")

        program_clinic_id = clinic.id
        is_affiliate = False

        if affiliate_slug:
            if self.repo.get_affiliate_clinic(self.db, affiliate_slug, clinic.id):
                is_affiliate = True
        elif clinic.affiliate_owner_clinic_id:
            # Affiliates sell the programs of their parent brand
            is_affiliate = True
            program_clinic_id = clinic.affiliate_owner_clinic_id

        programs = self.repo.get_active_programs_for_clinic(self.db, program_clinic_id)
        data = []
        for program in programs:
            template = program.medical_template
            display = program.frontend_display_product
            data.append(
                {
                    "id": program.id,
                    "name": program.name,
                    "description": program.description,
                    "medicalTemplateId": program.medical_template_id,
                    "medicalTemplate": {
                        "id": template.id,
                        "title": template.title,
                        "description": template.description,
                    }
                    if template
                    else None,
                    "isActive": program.is_active,
                    "frontendDisplayProductId": program.frontend_display_product_id,
                    "frontendDisplayProduct": {
                        "id": display.id,
                        "name": display.name,
                        "imageUrl": display.image_url,
                    }
                    if display
                    else None,
                }
            )

        return {"success": True, "data": data, "isAffiliate": is_affiliate}

    def get_public_program(self, program_id: str) -> dict:
        program = self.repo.get_active_program(self.db, program_id)
        if not program:
            raise HTTPException(status_code=404, detail="Program not found")

        products = []
        if program.medical_template_id:
            for product in self.repo.get_template_products(self.db, program.medical_template_id):
                tenant_info = None
                if program.clinic_id:
                    tenant_product = self.repo.get_tenant_product(self.db, product.id, program.clinic_id)
                    if tenant_product:
                        tenant_info = {
                            "id": tenant_product.id,
                            "price": float(tenant_product.price or 0),
                            "isActive": tenant_product.is_active,
                        }
                products.append(
                    {
                        "id": product.id,
                        "name": product.name,
                        "imageUrl": product.image_url,
                        "basePrice": product.price,
                        "category": product.category,
                        "tenantProduct": tenant_info,
                        "displayPrice": tenant_info["price"] if tenant_info else float(product.price or 0),
                    }
                )

        template = program.medical_template
        return {
            "success": True,
            "data": {
                "id": program.id,
                "name": program.name,
                "description": program.description,
                "clinicId": program.clinic_id,
                "medicalTemplateId": program.medical_template_id,
                "medicalTemplate": {
                    "id": template.id,
                    "title": template.title,
                    "description": template.description,
                    "productOfferType": template.product_offer_type,
                }
                if template
                else None,
                "isActive": program.is_active,
                "products": products,
                "nonMedicalServices": program.non_medical_services(),
                "nonMedicalServicesFee": program.non_medical_services_fee(),
                "productOfferType": (template.product_offer_type if template else None) or "single_choice",
            },
        }
