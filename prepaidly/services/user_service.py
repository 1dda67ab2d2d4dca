"""Service for user management."""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
import logging

from prepaidly.exceptions import ConflictError, NotFoundError, ValidationError
from prepaidly.models import User

logger = logging.getLogger(__name__)


def _normalize_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    return email


def create_user(db: Session, email: str) -> User:
    """Create a new user."""
    email = _normalize_email(email)
    if get_user_by_email(db, email):
        raise ConflictError(f"User with email {email} already exists")

    user = User(email=email)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"User with email {email} already exists") from e
    db.refresh(user)
    logger.info(f"Created user {user.id}")
    return user


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    """Get user by ID."""
    return db.get(User, user_id)


def get_user(db: Session, user_id: int) -> User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError(f"User not found: {user_id}")
    return user


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Get user by email."""
    return db.query(User).filter(User.email == email.strip().lower()).first()


def get_user_by_email_or_404(db: Session, email: str) -> User:
    user = get_user_by_email(db, email)
    if user is None:
        raise NotFoundError(f"User not found with email: {email}")
    return user


def update_user(db: Session, user_id: int, email: Optional[str] = None) -> User:
    """
    Update a user's email.

    A missing email leaves the user unchanged. Changing to an address another
    user already has raises ConflictError.
    """
    user = get_user(db, user_id)
    if email is None:
        return user

    email = _normalize_email(email)
    if email != user.email:
        existing = get_user_by_email(db, email)
        if existing is not None and existing.id != user.id:
            raise ConflictError(f"User with email {email} already exists")
        user.email = email
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise ConflictError(f"User with email {email} already exists") from e
        db.refresh(user)
        logger.info(f"Updated email for user {user_id}")
    return user


def list_users(db: Session, skip: int = 0, limit: int = 100) -> List[User]:
    return db.query(User).order_by(User.id).offset(skip).limit(limit).all()


def delete_user(db: Session, user_id: int) -> None:
    """Delete a user and, through the cascade, their Xero connections."""
    user = get_user(db, user_id)
    db.delete(user)
    db.commit()
    logger.info(f"Deleted user {user_id}")
