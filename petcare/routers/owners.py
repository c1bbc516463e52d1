# petcare/routers/owners.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden
from ..limiter import limiter, login_rate_limit
from ..permissions import Action, Principal, can, is_self

router = APIRouter(
    prefix="/owners",
    tags=["Pet Owners"],
    responses={404: {"description": "Not found"}},
)


def _ensure_self_or_admin(principal: Principal, owner_id: str):
    if not (is_self(principal, owner_id) or can(principal, Action.admin_manage_owner)):
        raise Forbidden("You can only access your own account")


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(login_rate_limit)
def register_owner(request: Request, payload: schemas.OwnerRegister, db: Session = Depends(get_db)):
    """Public registration for pet owners."""
    owner = crud.create_owner(db, payload)
    crud.create_audit_log(
        db, models.AuditAction.CREATE, category="REGISTRATION",
        actor_id=owner.id, actor_role="owner", resource_type="owner", resource_id=owner.id,
    )
    return {"message": "Pet owner registered successfully", "owner": schemas.OwnerOut.model_validate(owner)}


@router.get("")
def list_owners(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.list_owners)),
):
    owners, total = crud.list_owners(db, page=page, limit=limit, search=search)
    return {
        "message": "Pet owners retrieved successfully",
        "owners": [schemas.OwnerOut.model_validate(o) for o in owners],
        "pagination": crud.pagination_meta(page, limit, total),
    }


@router.get("/{owner_id}")
def get_owner(
    owner_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    _ensure_self_or_admin(principal, owner_id)
    owner = crud.get_owner_or_404(db, owner_id)
    return {"message": "Pet owner retrieved successfully", "owner": schemas.OwnerOut.model_validate(owner)}


@router.get("/{owner_id}/summary")
def get_owner_summary(
    owner_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    """Counts shown on the owner dashboard."""
    _ensure_self_or_admin(principal, owner_id)
    owner = crud.get_owner_or_404(db, owner_id)
    return {
        "message": "Owner summary retrieved successfully",
        "owner": schemas.OwnerOut.model_validate(owner),
        "summary": crud.owner_summary(db, owner_id),
    }


@router.put("/{owner_id}")
def update_owner(
    owner_id: str,
    payload: schemas.OwnerUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    if not is_self(principal, owner_id):
        raise Forbidden("You can only update your own profile")
    owner = crud.get_owner_or_404(db, owner_id)
    owner = crud.update_owner(db, owner, payload)
    return {"message": "Profile updated successfully", "owner": schemas.OwnerOut.model_validate(owner)}


@router.delete("/{owner_id}")
def delete_owner(
    owner_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    """Soft-delete an owner account (the owner themselves or a Primary vet)."""
    _ensure_self_or_admin(principal, owner_id)
    owner = crud.get_owner_or_404(db, owner_id)
    crud.soft_delete_owner(db, owner)
    crud.create_audit_log(
        db, models.AuditAction.DELETE, category="ACCOUNT", actor=principal,
        resource_type="owner", resource_id=owner_id,
    )
    return {"message": "Account deleted successfully"}
