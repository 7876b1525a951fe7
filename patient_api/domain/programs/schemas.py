"""Program domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

# Request field -> model column for the non-medical service add-ons
SERVICE_FIELDS = {
    "hasPatientPortal": "has_patient_portal",
    "patientPortalPrice": "patient_portal_price",
    "hasBmiCalculator": "has_bmi_calculator",
    "bmiCalculatorPrice": "bmi_calculator_price",
    "hasProteinIntakeCalculator": "has_protein_intake_calculator",
    "proteinIntakeCalculatorPrice": "protein_intake_calculator_price",
    "hasCalorieDeficitCalculator": "has_calorie_deficit_calculator",
    "calorieDeficitCalculatorPrice": "calorie_deficit_calculator_price",
    "hasEasyShopping": "has_easy_shopping",
    "easyShoppingPrice": "easy_shopping_price",
}


class ProgramFields(BaseModel):
    description: Optional[str] = None
    medicalTemplateId: Optional[str] = None
    parentProgramId: Optional[str] = None
    individualProductId: Optional[str] = None
    frontendDisplayProductId: Optional[str] = None
    isActive: Optional[bool] = None
    hasPatientPortal: Optional[bool] = None
    patientPortalPrice: Optional[float] = None
    hasBmiCalculator: Optional[bool] = None
    bmiCalculatorPrice: Optional[float] = None
    hasProteinIntakeCalculator: Optional[bool] = None
    proteinIntakeCalculatorPrice: Optional[float] = None
    hasCalorieDeficitCalculator: Optional[bool] = None
    calorieDeficitCalculatorPrice: Optional[float] = None
    hasEasyShopping: Optional[bool] = None
    easyShoppingPrice: Optional[float] = None

    @field_validator(
        "patientPortalPrice",
        "bmiCalculatorPrice",
        "proteinIntakeCalculatorPrice",
        "calorieDeficitCalculatorPrice",
        "easyShoppingPrice",
    )
    @classmethod
    def validate_price(cls, v):
        if v is not None and v < 0:
            raise ValueError("Price cannot be negative")
        return v


class ProgramCreate(ProgramFields):
    """Name is optional here so a missing name reports 400 with the API's own message"""

    name: Optional[str] = None


class ProgramUpdate(ProgramFields):
    name: Optional[str] = None


class ProgramResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    clinicId: Optional[str] = None
    medicalTemplateId: Optional[str] = None
    parentProgramId: Optional[str] = None
    individualProductId: Optional[str] = None
    frontendDisplayProductId: Optional[str] = None
    isActive: bool
    nonMedicalServices: dict
    nonMedicalServicesFee: float
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, program) -> "ProgramResponse":
        return cls(
            id=program.id,
            name=program.name,
            description=program.description,
            clinicId=program.clinic_id,
            medicalTemplateId=program.medical_template_id,
            parentProgramId=program.parent_program_id,
            individualProductId=program.individual_product_id,
            frontendDisplayProductId=program.frontend_display_product_id,
            isActive=program.is_active,
            nonMedicalServices=program.non_medical_services(),
            nonMedicalServicesFee=program.non_medical_services_fee(),
            createdAt=program.created_at,
            updatedAt=program.updated_at,
        )
