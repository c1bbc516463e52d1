import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .database import get_db
from .exceptions import AccountInactive, Forbidden, Unauthenticated, ValidationError
from .permissions import Action, Principal, Role, can

security_logger = logging.getLogger("security")

# Password hashing
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__rounds=4,
    argon2__memory_cost=65536,
    argon2__parallelism=1,
)

# Bearer tokens are read from the Authorization header; a missing header is
# reported by get_current_principal with the API's own error body.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if not plain_password or not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        security_logger.warning(f"Password verification failed: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def validate_password(password: Optional[str]) -> str:
    min_length = get_settings().min_password_length
    if not password or len(password) < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters long")
    return password


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_login_token(account_id: str, email: str, role: Role) -> str:
    """Token embedding {id, email, role}; ``sub`` mirrors ``id`` for standard JWT consumers."""
    return create_access_token({"id": account_id, "sub": account_id, "email": email, "role": role.value})


def decode_token(token: str) -> Dict[str, Any]:
    """Verify a token's signature and expiry and return its claims."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise Unauthenticated("Not authorized, token expired")
    except JWTError as e:
        security_logger.warning(f"Token verification failed: {e}")
        raise Unauthenticated("Not authorized, token failed")


def principal_for_owner(owner: models.PetOwner) -> Principal:
    return Principal(
        id=owner.id,
        role=Role.owner,
        email=owner.email,
        first_name=owner.first_name,
        last_name=owner.last_name,
    )


def principal_for_vet(vet: models.Veterinarian) -> Principal:
    owned = frozenset()
    if vet.access_level == models.AccessLevel.primary:
        owned = frozenset(clinic.id for clinic in vet.owned_clinics)
    return Principal(
        id=vet.id,
        role=Role.vet,
        email=vet.email,
        access_level=vet.access_level,
        clinic_id=vet.current_active_clinic_id,
        owned_clinic_ids=owned,
        first_name=vet.first_name,
        last_name=vet.last_name,
    )


def _load_owner(db: Session, subject_id: str) -> Optional[models.PetOwner]:
    return db.query(models.PetOwner).filter(models.PetOwner.id == subject_id).first()


def _load_vet(db: Session, subject_id: str) -> Optional[models.Veterinarian]:
    return db.query(models.Veterinarian).filter(models.Veterinarian.id == subject_id).first()


def resolve_principal(db: Session, token: Optional[str]) -> Principal:
    """
    Turn a bearer token into the Principal the request acts as.

    Tokens carrying a ``role`` claim are looked up in that account table only.
    Tokens without one were issued before roles were embedded; for those the
    veterinarian table is probed first and the owner table second, and the
    first match wins.
    """
    if not token:
        raise Unauthenticated("Not authorized, no token")

    payload = decode_token(token)
    subject_id = payload.get("id") or payload.get("sub")
    if not subject_id:
        raise Unauthenticated("Not authorized, token failed")

    role = payload.get("role")
    owner = vet = None
    if role == Role.vet.value:
        vet = _load_vet(db, subject_id)
    elif role == Role.owner.value:
        owner = _load_owner(db, subject_id)
    else:
        vet = _load_vet(db, subject_id)
        if vet is None:
            owner = _load_owner(db, subject_id)

    if vet is not None:
        if vet.status != models.VetStatus.active:
            security_logger.warning(f"Inactive veterinarian {vet.id} presented a valid token")
            raise AccountInactive("Account is deactivated")
        return principal_for_vet(vet)

    if owner is not None and not owner.is_deleted:
        return principal_for_owner(owner)

    raise Unauthenticated("Not authorized, user not found")


async def get_current_principal(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    """Dependency attaching the authenticated principal to the request."""
    principal = resolve_principal(db, token)
    request.state.principal = principal
    return principal


def require_role(*allowed_roles: Role):
    """Dependency factory restricting a route to the given account kinds."""
    def role_dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed_roles:
            security_logger.info(f"Role {principal.role.value} denied; requires {[r.value for r in allowed_roles]}")
            raise Forbidden(f"Access restricted to {' or '.join(r.value for r in allowed_roles)} accounts")
        return principal
    return role_dependency


def require_capability(action: Action):
    """Dependency factory consulting the capability table for ``action``."""
    def capability_dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
    ) -> Principal:
        if not can(principal, action):
            from . import crud

            security_logger.info(
                f"Capability {action.value} denied for {principal.role.value} "
                f"({principal.access_level.value if principal.access_level else '-'})"
            )
            crud.create_audit_log(
                db, models.AuditAction.ACCESS_DENIED, category="AUTH", actor=principal,
                details=f"capability={action.value}",
                ip_address=request.client.host if request.client else None,
            )
            raise Forbidden()
        return principal
    return capability_dependency


require_owner = require_role(Role.owner)
require_vet = require_role(Role.vet)


__all__ = [
    "pwd_context", "verify_password", "get_password_hash", "validate_password",
    "create_access_token", "create_login_token", "decode_token",
    "resolve_principal", "get_current_principal",
    "require_role", "require_capability", "require_owner", "require_vet",
]
