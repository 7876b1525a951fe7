import re
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_uuid():
    """Primary keys are UUID strings"""
    return str(uuid.uuid4())


class TimestampMixin:
    """created/updated timestamps plus soft delete (rows are never hard deleted)"""

    created_at = Column(DateTime, server_default=func.now(), default=datetime.utcnow)
    updated_at = Column(
        DateTime, server_default=func.now(), default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at = Column(DateTime, nullable=True, index=True)

    def soft_delete(self):
        self.deleted_at = datetime.utcnow()


USER_ROLES = ("patient", "doctor", "admin", "brand")


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="patient", nullable=False)  # patient, doctor, admin, brand
    dob = Column(String(10), nullable=True)  # YYYY-MM-DD
    gender = Column(String(20), nullable=True)
    phone_number = Column(String(50), nullable=True)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True, index=True)
    npi_number = Column(String(10), nullable=True)
    doctor_license_states = Column(JSON, nullable=True)  # ["CA", "TX"]
    activated = Column(Boolean, default=False, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    clinic = relationship("Clinic", back_populates="users", foreign_keys=[clinic_id])
    user_roles = relationship("UserRoles", back_populates="user", uselist=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def role_list(self) -> list[str]:
        """Roles from the UserRoles row, falling back to the legacy role column"""
        if self.user_roles:
            return self.user_roles.role_list()
        return [self.role] if self.role else []

    def to_safe_dict(self) -> dict:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "role": self.role,
            "roles": self.role_list(),
            "clinicId": self.clinic_id,
            "npiNumber": self.npi_number,
            "activated": self.activated,
        }


class UserRoles(TimestampMixin, Base):
    """One row per user; a user can hold several roles at once"""

    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    patient = Column(Boolean, default=False, nullable=False)
    doctor = Column(Boolean, default=False, nullable=False)
    admin = Column(Boolean, default=False, nullable=False)
    brand = Column(Boolean, default=False, nullable=False)
    super_admin = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="user_roles")

    def role_list(self) -> list[str]:
        names = ["patient", "doctor", "admin", "brand", "super_admin"]
        return [name for name in names if getattr(self, name)]


class Clinic(TimestampMixin, Base):
    __tablename__ = "clinics"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    logo = Column(String(500), nullable=True)
    business_type = Column(String(100), nullable=True)
    stripe_account_id = Column(String(255), nullable=True)
    # Affiliate clinics sell the programs of the brand clinic they belong to
    affiliate_owner_clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True)

    users = relationship("User", back_populates="clinic", foreign_keys="User.clinic_id")
    affiliate_owner = relationship("Clinic", remote_side=[id])

    @staticmethod
    def slugify(name: str) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
        return slug.strip("-")


class Questionnaire(TimestampMixin, Base):
    """Medical intake template (teleform)"""

    __tablename__ = "questionnaires"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True)
    form_template_type = Column(String(50), nullable=True)  # normal, user_profile, doctor, master_template
    product_offer_type = Column(String(30), default="single_choice")  # single_choice, multiple_choice

    steps = relationship(
        "QuestionnaireStep", back_populates="questionnaire", order_by="QuestionnaireStep.step_order"
    )
    form_products = relationship("FormProducts", back_populates="questionnaire")


class QuestionnaireStep(TimestampMixin, Base):
    __tablename__ = "questionnaire_steps"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    questionnaire_id = Column(String(36), ForeignKey("questionnaires.id"), nullable=False)
    title = Column(String(255), nullable=False)
    step_order = Column(Integer, default=0, nullable=False)
    category = Column(String(50), default="normal")

    questionnaire = relationship("Questionnaire", back_populates="steps")
    questions = relationship("Question", back_populates="step", order_by="Question.question_order")


class Question(TimestampMixin, Base):
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    step_id = Column(String(36), ForeignKey("questionnaire_steps.id"), nullable=False)
    question_text = Column(Text, nullable=False)
    answer_type = Column(String(50), default="text")  # text, radio, checkbox, date, number
    is_required = Column(Boolean, default=True)
    question_order = Column(Integer, default=0)
    options = Column(JSON, nullable=True)

    step = relationship("QuestionnaireStep", back_populates="questions")


class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, default=0, nullable=False)
    wholesale_price = Column(Float, nullable=True)
    category = Column(String(100), nullable=True)
    image_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    placeholder_sig = Column(Text, nullable=True)
    # Pharmacy catalog identifiers
    ironsail_pharmacy_id = Column(String(100), nullable=True)
    ironsail_medication_id = Column(String(100), nullable=True)
    olympia_product_id = Column(String(100), nullable=True)
    md_offering_id = Column(String(100), nullable=True)


class TenantProduct(TimestampMixin, Base):
    """Clinic-specific retail price for a product"""

    __tablename__ = "tenant_products"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    price = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    product = relationship("Product")


class FormProducts(TimestampMixin, Base):
    """Products offered by a medical template"""

    __tablename__ = "form_products"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    questionnaire_id = Column(String(36), ForeignKey("questionnaires.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)

    questionnaire = relationship("Questionnaire", back_populates="form_products")
    product = relationship("Product")


# Non-medical add-on services a program can bundle: (flag column, price column, API key)
NON_MEDICAL_SERVICES = (
    ("has_patient_portal", "patient_portal_price", "patientPortal"),
    ("has_bmi_calculator", "bmi_calculator_price", "bmiCalculator"),
    ("has_protein_intake_calculator", "protein_intake_calculator_price", "proteinIntakeCalculator"),
    ("has_calorie_deficit_calculator", "calorie_deficit_calculator_price", "calorieDeficitCalculator"),
    ("has_easy_shopping", "easy_shopping_price", "easyShopping"),
)


class Program(TimestampMixin, Base):
    __tablename__ = "programs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True, index=True)  # null = template
    medical_template_id = Column(String(36), ForeignKey("questionnaires.id"), nullable=True)
    parent_program_id = Column(String(36), ForeignKey("programs.id"), nullable=True)
    individual_product_id = Column(String(36), ForeignKey("products.id"), nullable=True)
    frontend_display_product_id = Column(String(36), ForeignKey("products.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    has_patient_portal = Column(Boolean, default=False, nullable=False)
    patient_portal_price = Column(Float, default=0, nullable=False)
    has_bmi_calculator = Column(Boolean, default=False, nullable=False)
    bmi_calculator_price = Column(Float, default=0, nullable=False)
    has_protein_intake_calculator = Column(Boolean, default=False, nullable=False)
    protein_intake_calculator_price = Column(Float, default=0, nullable=False)
    has_calorie_deficit_calculator = Column(Boolean, default=False, nullable=False)
    calorie_deficit_calculator_price = Column(Float, default=0, nullable=False)
    has_easy_shopping = Column(Boolean, default=False, nullable=False)
    easy_shopping_price = Column(Float, default=0, nullable=False)

    clinic = relationship("Clinic")
    medical_template = relationship("Questionnaire")
    parent_program = relationship("Program", remote_side=[id])
    individual_product = relationship("Product", foreign_keys=[individual_product_id])
    frontend_display_product = relationship("Product", foreign_keys=[frontend_display_product_id])

    def non_medical_services(self) -> dict:
        return {
            key: {"enabled": bool(getattr(self, flag)), "price": float(getattr(self, price) or 0)}
            for flag, price, key in NON_MEDICAL_SERVICES
        }

    def non_medical_services_fee(self) -> float:
        return sum(
            float(getattr(self, price) or 0)
            for flag, price, _ in NON_MEDICAL_SERVICES
            if getattr(self, flag)
        )


class TenantProductForm(TimestampMixin, Base):
    """Intake form a clinic publishes for one of its products"""

    __tablename__ = "tenant_product_forms"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=True)
    questionnaire_id = Column(String(36), ForeignKey("questionnaires.id"), nullable=True)
    steps = Column(JSON, nullable=True)  # [{id, question, label, type, order, enabled}]

    product = relationship("Product")


class TenantAnalyticsEvent(TimestampMixin, Base):
    __tablename__ = "tenant_analytics_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    form_id = Column(String(36), ForeignKey("tenant_product_forms.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    session_id = Column(String(100), nullable=True)
    event_type = Column(String(20), nullable=False)  # view, conversion, dropoff
    event_metadata = Column("metadata", JSON, nullable=True)

    user = relationship("User")
