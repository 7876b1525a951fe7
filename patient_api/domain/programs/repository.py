"""Program repository - Database operations for programs"""

from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Clinic, FormProducts, Product, Program, Questionnaire, TenantProduct


class ProgramRepository:
    """Repository for program database operations"""

    @staticmethod
    def get_programs(
        db: Session, clinic_id: str, medical_template_id: Optional[str] = None
    ) -> list[Program]:
        query = db.query(Program).filter(Program.clinic_id == clinic_id, Program.deleted_at.is_(None))
        if medical_template_id:
            query = query.filter(Program.medical_template_id == medical_template_id)
        return query.order_by(Program.created_at.desc()).all()

    @staticmethod
    def get_program(db: Session, program_id: str, clinic_id: str) -> Optional[Program]:
        """A program the clinic owns"""
        return (
            db.query(Program)
            .filter(
                Program.id == program_id,
                Program.clinic_id == clinic_id,
                Program.deleted_at.is_(None),
            )
            .first()
        )

    @staticmethod
    def get_program_by_id(db: Session, program_id: str) -> Optional[Program]:
        return db.query(Program).filter(Program.id == program_id, Program.deleted_at.is_(None)).first()

    @staticmethod
    def get_active_program(db: Session, program_id: str) -> Optional[Program]:
        return (
            db.query(Program)
            .options(joinedload(Program.medical_template))
            .filter(
                Program.id == program_id,
                Program.is_active.is_(True),
                Program.deleted_at.is_(None),
            )
            .first()
        )

    @staticmethod
    def get_active_programs_for_clinic(db: Session, clinic_id: str) -> list[Program]:
        return (
            db.query(Program)
            .options(joinedload(Program.medical_template), joinedload(Program.frontend_display_product))
            .filter(
                Program.clinic_id == clinic_id,
                Program.is_active.is_(True),
                Program.deleted_at.is_(None),
            )
            .order_by(Program.created_at.desc())
            .all()
        )

    @staticmethod
    def get_clinic_by_slug(db: Session, slug: str) -> Optional[Clinic]:
        return db.query(Clinic).filter(Clinic.slug == slug, Clinic.deleted_at.is_(None)).first()

    @staticmethod
    def get_affiliate_clinic(db: Session, slug: str, owner_clinic_id: str) -> Optional[Clinic]:
        return (
            db.query(Clinic)
            .filter(
                Clinic.slug == slug,
                Clinic.affiliate_owner_clinic_id == owner_clinic_id,
                Clinic.deleted_at.is_(None),
            )
            .first()
        )

    @staticmethod
    def template_exists(db: Session, template_id: str) -> bool:
        return (
            db.query(Questionnaire.id)
            .filter(Questionnaire.id == template_id, Questionnaire.deleted_at.is_(None))
            .first()
            is not None
        )

    @staticmethod
    def product_exists(db: Session, product_id: str) -> bool:
        return (
            db.query(Product.id).filter(Product.id == product_id, Product.deleted_at.is_(None)).first()
            is not None
        )

    @staticmethod
    def get_template_products(db: Session, template_id: str) -> list[Product]:
        return (
            db.query(Product)
            .join(FormProducts, FormProducts.product_id == Product.id)
            .filter(
                FormProducts.questionnaire_id == template_id,
                FormProducts.deleted_at.is_(None),
                Product.deleted_at.is_(None),
            )
            .all()
        )

    @staticmethod
    def get_tenant_product(db: Session, product_id: str, clinic_id: str) -> Optional[TenantProduct]:
        return (
            db.query(TenantProduct)
            .filter(
                TenantProduct.product_id == product_id,
                TenantProduct.clinic_id == clinic_id,
                TenantProduct.deleted_at.is_(None),
            )
            .first()
        )

    @staticmethod
    def create_program(db: Session, **program_data) -> Program:
        program = Program(**program_data)
        db.add(program)
        db.commit()
        db.refresh(program)
        return program

    @staticmethod
    def update_program(db: Session, program: Program, **updates) -> Program:
        for key, value in updates.items():
            setattr(program, key, value)
        db.commit()
        db.refresh(program)
        return program

    @staticmethod
    def delete_program(db: Session, program: Program) -> None:
        program.soft_delete()
        db.commit()
