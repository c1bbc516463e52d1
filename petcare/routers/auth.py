# petcare/routers/auth.py
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import AccountInactive, Unauthenticated
from ..limiter import limiter, login_rate_limit
from ..permissions import Principal, Role

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={404: {"description": "Not found"}},
)

security_logger = logging.getLogger("security")


def _client_ip(request: Request):
    return request.client.host if request.client else None


def _find_account(db: Session, email: str, role):
    """Owners are checked before veterinarians unless the caller names a role."""
    if role in (None, Role.owner):
        owner = crud.get_owner_by_email(db, email)
        if owner and not owner.is_deleted:
            return Role.owner, owner
    if role in (None, Role.vet):
        vet = crud.get_vet_by_email(db, email)
        if vet:
            return Role.vet, vet
    return None, None


@router.post("/login")
@limiter.limit(login_rate_limit)
def login(request: Request, credentials: schemas.LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate an owner or veterinarian and issue a bearer token.
    The token embeds the account id, email and role.
    """
    role, account = _find_account(db, credentials.email, credentials.role)

    if account is None or not security.verify_password(credentials.password, account.password_hash):
        security_logger.warning(f"Failed login for {credentials.email} from {_client_ip(request)}")
        crud.create_audit_log(
            db, models.AuditAction.LOGIN_FAILED, category="AUTH",
            details=f"email={credentials.email}", ip_address=_client_ip(request),
        )
        raise Unauthenticated("Invalid email or password")

    if role == Role.vet and account.status != models.VetStatus.active:
        security_logger.warning(f"Login attempt for inactive veterinarian {account.id}")
        raise AccountInactive("Account is deactivated. Please contact your clinic administrator")

    token = security.create_login_token(account.id, account.email, role)
    crud.create_audit_log(
        db, models.AuditAction.LOGIN, category="AUTH",
        actor_id=account.id, actor_role=role.value, ip_address=_client_ip(request),
    )

    if role == Role.owner:
        user = schemas.OwnerOut.model_validate(account)
    else:
        user = schemas.VetOut.model_validate(account)
    return {"message": "Login successful", "token": token, "role": role.value, "user": user}


@router.get("/me")
def read_me(
    principal: Principal = Depends(security.get_current_principal),
    db: Session = Depends(get_db),
):
    """Return the authenticated account."""
    if principal.is_owner:
        user = schemas.OwnerOut.model_validate(crud.get_owner_or_404(db, principal.id))
    else:
        user = schemas.VetOut.model_validate(crud.get_vet_or_404(db, principal.id))
    return {
        "message": "Authenticated",
        "role": principal.role.value,
        "accessLevel": principal.access_level.value if principal.access_level else None,
        "clinicId": principal.clinic_id,
        "ownedClinicIds": sorted(principal.owned_clinic_ids),
        "user": user,
    }


@router.post("/change-password")
def change_password(
    payload: schemas.ChangePasswordRequest,
    principal: Principal = Depends(security.get_current_principal),
    db: Session = Depends(get_db),
):
    if principal.is_owner:
        account = crud.get_owner_or_404(db, principal.id)
    else:
        account = crud.get_vet_or_404(db, principal.id)
    crud.change_password(db, account, payload.current_password, payload.new_password)
    crud.create_audit_log(
        db, models.AuditAction.UPDATE, category="AUTH", actor=principal,
        resource_type=principal.role.value, resource_id=principal.id, details="password changed",
    )
    return {"message": "Password updated successfully"}
