"""Auth repository - Database operations for users, roles and clinics"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Clinic, User, UserRoles


class AuthRepository:
    """Repository for user account database operations"""

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        return (
            db.query(User)
            .options(joinedload(User.user_roles))
            .filter(User.email == email.lower(), User.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def get_clinic(db: Session, clinic_id: str) -> Optional[Clinic]:
        return db.query(Clinic).filter(Clinic.id == clinic_id, Clinic.deleted_at.is_(None)).first()

    @staticmethod
    def slug_exists(db: Session, slug: str) -> bool:
        return db.query(Clinic.id).filter(Clinic.slug == slug).first() is not None

    @staticmethod
    def create_clinic(db: Session, name: str, slug: str, business_type: Optional[str]) -> Clinic:
        clinic = Clinic(name=name, slug=slug, logo="", business_type=business_type)
        db.add(clinic)
        db.flush()
        return clinic

    @staticmethod
    def create_user(db: Session, roles: dict, **user_data) -> User:
        """Create the user and its UserRoles row in one transaction"""
        user = User(**user_data)
        db.add(user)
        db.flush()
        db.add(UserRoles(user_id=user.id, **roles))
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def touch_last_login(db: Session, user: User) -> None:
        user.last_login_at = datetime.utcnow()
        db.commit()
