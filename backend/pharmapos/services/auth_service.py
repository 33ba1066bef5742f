# Overview: Service-layer operations for auth; password hashing and credential checks.

"""
Authentication Service

WHY: Every sale, stock movement and ledger entry is stamped with the user
who caused it, so every action must be attributable to a real account.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Session tokens managed separately (see session_service.py)
"""

import bcrypt

from ..extensions import db
from ..errors import ValidationError
from ..models import Branch, User
from ..models.auth import ROLES
from pharmapos.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    name: str,
    password: str,
    role: str,
    branch_id: int | None = None,
    email: str | None = None,
    rounds: int = 12,
) -> User:
    """
    Create a staff account.

    Raises ValidationError for an unknown role/branch or a taken
    username/email, PasswordValidationError for a weak password.
    """
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")

    if branch_id is not None and db.session.get(Branch, branch_id) is None:
        raise ValidationError("Branch not found")

    clash = db.session.query(User).filter(
        db.or_(User.username == username, db.and_(User.email.isnot(None), User.email == email))
    ).first()
    if clash:
        raise ValidationError("Username or email already exists")

    user = User(
        username=username,
        name=name,
        email=email,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        branch_id=branch_id,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
