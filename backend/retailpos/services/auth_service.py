# Overview: Cashier identity: password hashing, user creation and authentication.

"""
Authentication Service

WHY: Every sale is attributed to the cashier whose session recorded it.
Passwords are hashed with bcrypt; plaintext never reaches the database.
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Role, Store, User
from ..time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one letter and one digit
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe via bcrypt.checkpw; a malformed hash never verifies."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    *,
    name: str,
    username: str,
    email: str,
    password: str,
    role_name: str | None = None,
    store_id: int | None = None,
) -> User:
    """
    Raises:
        ValueError: duplicate username/email, unknown role or store
        PasswordValidationError: weak password
    """
    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Username or email already exists")

    role = None
    if role_name is not None:
        role = db.session.query(Role).filter_by(name=role_name).first()
        if role is None:
            raise ValueError(f"Role {role_name} not found")

    if store_id is not None and db.session.get(Store, store_id) is None:
        raise ValueError("Store not found")

    user = User(
        name=name,
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        store_id=store_id,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate by username or email.

    Returns the user and stamps last_login_at on success, None otherwise.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier),
        User.is_active.is_(True),
    ).first()

    if user is None or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
